from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from ``TABLEMAP_*`` environment variables.

    Every value has a default so the package can be imported without any
    environment set up; the database URL defaults to an in-memory SQLite
    database.
    """

    model_config = SettingsConfigDict(env_prefix="TABLEMAP_", env_file=".env")

    database_url: SecretStr = SecretStr("sqlite://")
    timezone: str = "UTC"
    log_level: str = "INFO"

    # Applied to SELECTs that do not ask for a limit, to avoid unbounded scans
    default_query_limit: int = 1000

    # Queries slower than this are logged with a warning
    slow_query_threshold_ms: float = 5.0

    structure_file: Path = Path("database/structure.sql")
    backup_dir: Path = Path("database/backups")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Reject unknown IANA timezone names at start up.

        :param str value: the configured timezone name
        :raises ValueError: if the name is not a known timezone
        :return str: the validated name
        """
        try:
            ZoneInfo(value)
        except Exception as e:
            raise ValueError(f"Unknown timezone '{value}'") from e
        return value

    @field_validator("default_query_limit")
    @classmethod
    def validate_default_query_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("default_query_limit must be a positive integer")
        return value

    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


settings = Settings()
