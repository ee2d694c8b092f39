from datetime import datetime, tzinfo
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tablemap.settings import settings


class RequestContext(BaseModel):
    """Who is making the current call, and in which timezone.

    Passed explicitly to the read and write paths of a model, which use it
    for the ownership filter and for stamping the owner and timestamps.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    user_id: Any = None
    is_admin: bool = False
    timezone: tzinfo = Field(default_factory=settings.tz)

    @property
    def is_logged_in(self) -> bool:
        return self.user_id is not None

    def now(self) -> datetime:
        return datetime.now(self.timezone)


def anonymous() -> RequestContext:
    return RequestContext()
