"""
Direct relations, backed by one foreign key.

A non-inversed link stores the target id in a column of the model table and
holds a single relation value. An inversed link reads the foreign key stored
in the target table and holds a dict of target id to relation value.
"""

import logging
from typing import Any

from sqlalchemy import CHAR, Column, Integer

from tablemap.attribute_types import AttributeType
from tablemap.attributes.base import _SKIP, AbstractLinkAttribute
from tablemap.attributes.values import Unresolved, format_relation
from tablemap.errors import ModelDefinitionError
from tablemap.query import bind_kind_for

_LOGGER = logging.getLogger(__name__)

N_LINKS = ("one", "many")


class ModelAttributeLink(AbstractLinkAttribute):
    def __init__(
        self,
        name: str,
        *,
        model_name: str,
        model_table: str,
        is_inversed: bool = False,
        n_links: str = "one",
        target_column: str | None = None,
        target_updated_at_column: str | None = None,
        **kwargs: Any,
    ):
        if n_links not in N_LINKS:
            raise ModelDefinitionError(
                f"n_links of link '{name}' must be one of {N_LINKS}, not '{n_links}'"
            )
        if n_links == "many" and not is_inversed:
            raise ModelDefinitionError(
                f"Link '{name}' can only hold many targets when it is inversed"
            )

        self.is_inversed = is_inversed
        self.n_links = n_links
        if target_column is None:
            target_column = f"{model_name}_id" if is_inversed else f"{name}_id"
        super().__init__(
            name,
            model_name=model_name,
            model_table=model_table,
            target_column=target_column,
            **kwargs,
        )
        self.target_updated_at_column = (
            target_updated_at_column or self.target_model_updated_at
        )

    def _empty_value(self) -> Any:
        return {} if self.is_inversed else None

    ######################################
    # Value handling
    ######################################

    def _set_value(self, value: Any, is_creation: bool) -> None:
        if self.is_inversed:
            self._set_members(value, is_creation)
            return

        if self._is_empty(value) and isinstance(value, (list, tuple, set, dict)):
            value = None
        value = self._check_required(value, is_creation)
        if value is _SKIP:
            return
        if self._is_empty(value):
            self.value = None
            return
        parsed = self._parse_into(value)
        if parsed is not None:
            self.value = parsed

    def _load_value(self, value: Any) -> None:
        if self.is_inversed:
            self._load_rows(value)
            return
        if value is None:
            self.value = None
            return
        is_raw_id = isinstance(value, (int, str)) and not isinstance(value, bool)
        if self.db is not None and is_raw_id:
            row = self._target_query().where(self.target_id_column, value).first()
            # a hidden target keeps its stored foreign key
            self.value = Unresolved(value) if row is None else self._resolve_row(row)
            return
        self.value = self._parse_into(value)

    def load_reference(self, target_id: Any, object_id: Any) -> "ModelAttributeLink":
        """Bind to ``object_id`` knowing only the stored foreign key."""
        self.set_id(object_id)
        if not self.is_inversed:
            self.value = None if target_id is None else Unresolved(target_id)
        return self

    def _format(self) -> Any:
        if self.is_inversed:
            return self._format_members()
        return format_relation(self.value, self.target_id_column)

    def get_target_id(self) -> Any:
        """The id of the linked target, without fetching it."""
        if self.is_inversed:
            raise ModelDefinitionError(
                f"Link '{self.name}' is inversed, use get_target_ids()"
            )
        return None if self.value is None else self.value.id

    def get_target_ids(self) -> list[Any]:
        if not self.is_inversed:
            target_id = self.get_target_id()
            return [] if target_id is None else [target_id]
        return list(self.value.keys())

    def add(self, value: Any, persist_now: bool = False) -> "ModelAttributeLink":
        """Link one more target, replacing the current one when not inversed."""
        if self.is_inversed:
            parsed = self._parse_into(value)
            if parsed is not None:
                self.value[parsed.id] = parsed
        else:
            self._set_value(value, is_creation=False)

        if persist_now and self.is_valid:
            self._persist()
        return self

    def remove(
        self, value: Any = None, persist_now: bool = False, cascade: bool = False
    ) -> "ModelAttributeLink":
        """Unlink a target.

        :param Any value: the target to unlink; optional when not inversed
        :param bool persist_now: write the change straight away
        :param bool cascade: also delete the previous target row, only when
            not inversed
        """
        if not self.is_inversed:
            previous_id = self.get_target_id()
            if value is not None and self._id_key(
                self._member_id(value)
            ) != self._id_key(previous_id):
                self._target_not_linked(self._member_id(value))
                return self
            self.value = None
            if persist_now:
                self._persist()
            if cascade and previous_id is not None:
                self._require_db().execute(
                    f"DELETE FROM {self.target_table} "
                    f"WHERE {self.target_id_column} = ?",
                    bind_kind_for(previous_id),
                    previous_id,
                )
                _LOGGER.info(
                    f"Deleted {self.target_table} {previous_id} unlinked from "
                    f"{self.model_name} {self.object_id}"
                )
            return self

        target_id = self._member_id(value)
        key = self._find_key(target_id)
        if key is None:
            self._target_not_linked(target_id)
            return self
        del self.value[key]
        if persist_now:
            self._require_object_id()
            self._update_target_row(key, None)
        return self

    ######################################
    # Persistence
    ######################################

    def _persist(self) -> None:
        self._require_object_id()
        if self.is_inversed:
            self._reconcile_target_rows()
            return

        assignments = [f"{self.target_column} = ?"]
        target_id = self.get_target_id()
        bind_kinds = bind_kind_for(target_id)
        values: list[Any] = [target_id]
        if self.updated_at_column:
            assignments.append(f"{self.updated_at_column} = ?")
            bind_kinds += "s"
            values.append(self._now_sql())
        bind_kinds += bind_kind_for(self.object_id)
        values.append(self.object_id)

        self._require_db().execute(
            f"UPDATE {self.model_table} SET {', '.join(assignments)} "
            f"WHERE {self.model_id_column} = ?",
            bind_kinds,
            *values,
        )

    def _reconcile_target_rows(self) -> None:
        """Point the wanted target rows at this object and release the others.

        Target rows are never deleted, only their foreign key changes.
        Soft-deleted targets are left pointing where they were. Running it
        again once it succeeded writes nothing.
        """
        rows = (
            self._target_query()
            .select(self.target_id_column)
            .where(self.target_column, self.object_id)
            .no_limit()
            .fetch()
        )
        current = {
            self._id_key(row[self.target_id_column]): row[self.target_id_column]
            for row in rows
        }
        desired = {self._id_key(target_id): target_id for target_id in self.value}

        added = [desired[key] for key in desired if key not in current]
        removed = [current[key] for key in current if key not in desired]

        for target_id in added:
            self._update_target_row(target_id, self.object_id)
        for target_id in removed:
            self._update_target_row(target_id, None)

        if added or removed:
            _LOGGER.debug(
                f"Synchronised {self.model_name}.{self.name} for object "
                f"{self.object_id}",
                extra={"added": added, "removed": removed},
            )

    def _update_target_row(self, target_id: Any, foreign_key: Any) -> None:
        assignments = [f"{self.target_column} = ?"]
        bind_kinds = bind_kind_for(foreign_key)
        values: list[Any] = [foreign_key]
        if self.target_updated_at_column:
            assignments.append(f"{self.target_updated_at_column} = ?")
            bind_kinds += "s"
            values.append(self._now_sql())
        bind_kinds += bind_kind_for(target_id)
        values.append(target_id)

        self._require_db().execute(
            f"UPDATE {self.target_table} SET {', '.join(assignments)} "
            f"WHERE {self.target_id_column} = ?",
            bind_kinds,
            *values,
        )

    def column(self) -> Column:
        """The foreign key column, typed after the target id."""
        if self.is_inversed:
            raise ModelDefinitionError(
                f"Link '{self.name}' is inversed, its column is in {self.target_table}"
            )
        id_type = CHAR(36) if self.target_id_type == AttributeType.UUID else Integer()
        return Column(self.target_column, id_type, nullable=not self.is_required)

    def _fetch_value(self) -> Any:
        if self.is_inversed:
            return (
                self._target_query()
                .where(self.target_column, self.object_id)
                .no_limit()
                .fetch()
            )

        row = (
            self._query(self.model_table)
            .select(self.target_column)
            .where(self.model_id_column, self.object_id)
            .first()
        )
        if row is None:
            return None
        return row[self.target_column]
