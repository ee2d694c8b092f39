"""
Many-to-many relations, backed by a junction table.

Junction names follow the model names unless given explicitly. A polymorphic
junction (``is_many=True``) is shared by every kind linked to the same target,
so each of its rows also stores the name of the kind that owns it::

    post --tag_links--> tag      junction ``tagables``
        tagable_id    the post id
        tagable_type  "post"
        tag_id        the tag id

A plain junction joins exactly two kinds: ``<source>_<target>s`` with the
columns ``<source>_id`` and ``<target>_id``. The inversed side of a relation
swaps the names so both sides address the same table and columns.
"""

import logging
from typing import Any

from sqlalchemy import CHAR, Column, Integer

from tablemap.attribute_types import AttributeType
from tablemap.attributes.base import AbstractLinkAttribute, table_prefix
from tablemap.errors import ModelDefinitionError, QueryBuildError
from tablemap.query import bind_kind_for

_LOGGER = logging.getLogger(__name__)


class ModelAttributeLinkThrough(AbstractLinkAttribute):
    is_link_through = True

    def __init__(
        self,
        name: str,
        *,
        model_name: str,
        model_table: str,
        is_inversed: bool = False,
        is_many: bool = True,
        target_name: str | None = None,
        model_id_type: AttributeType = AttributeType.ID,
        relation_table: str | None = None,
        relation_source_column: str | None = None,
        relation_target_column: str | None = None,
        relation_source_type_column: str | None = None,
        relation_target_type_column: str | None = None,
        **kwargs: Any,
    ):
        self.is_inversed = is_inversed
        self.is_many = is_many
        super().__init__(
            name,
            model_name=model_name,
            model_table=model_table,
            **kwargs,
        )
        self.model_id_type = model_id_type
        self.target_name = self.target_name or target_name
        if self.target_name is None:
            if not (
                relation_table and relation_source_column and relation_target_column
            ):
                raise ModelDefinitionError(
                    f"Link '{name}' targets a table: give a target name or the full "
                    "junction description"
                )
            self.target_name = self.target_table

        prefix = table_prefix(self.bundle)
        source, target = model_name, self.target_name

        if is_many:
            owner = target if not is_inversed else source
            default_table = f"{prefix}{owner}ables"
            default_type_column = f"{owner}able_type"
            if is_inversed:
                default_source_column = f"{owner}_id"
                default_target_column = f"{owner}able_id"
            else:
                default_source_column = f"{owner}able_id"
                default_target_column = f"{owner}_id"
        else:
            first, second = (source, target) if not is_inversed else (target, source)
            default_table = f"{prefix}{first}_{second}s"
            default_type_column = None
            default_source_column = f"{source}_id"
            default_target_column = f"{target}_id"

        self.relation_table = relation_table or default_table
        self.relation_source_column = relation_source_column or default_source_column
        self.relation_target_column = relation_target_column or default_target_column
        self.relation_source_type_column = (
            relation_source_type_column or default_type_column
        )
        self.relation_target_type_column = relation_target_type_column
        self.target_column = self.relation_target_column

    def _empty_value(self) -> Any:
        return {}

    @property
    def source_discriminator(self) -> str:
        """Name of the kind owning the junction rows."""
        return self.target_name if self.is_inversed else self.model_name

    @property
    def target_discriminator(self) -> str:
        return self.model_name if self.is_inversed else self.target_name

    ######################################
    # Value handling
    ######################################

    def _set_value(self, value: Any, is_creation: bool) -> None:
        self._set_members(value, is_creation)

    def _load_value(self, value: Any) -> None:
        self._load_rows(value)

    def _format(self) -> list[dict]:
        return self._format_members()

    def get_target_ids(self) -> list[Any]:
        return list(self.value.keys())

    def add(self, value: Any, persist_now: bool = False) -> "ModelAttributeLinkThrough":
        parsed = self._parse_into(value)
        if parsed is not None:
            self.value[parsed.id] = parsed
            if persist_now:
                self._persist()
        return self

    def remove(
        self, value: Any = None, persist_now: bool = False, cascade: bool = False
    ) -> "ModelAttributeLinkThrough":
        key = self._find_key(self._member_id(value))
        if key is None:
            self._target_not_linked(self._member_id(value))
            return self
        del self.value[key]
        if persist_now:
            self._persist()
        return self

    def add_link(self, value: Any) -> "ModelAttributeLinkThrough":
        """Insert a single junction row for ``value`` without reconciling."""
        self._require_object_id()
        parsed = self._parse_into(value)
        if parsed is None:
            return self
        if self._id_key(parsed.id) not in {
            self._id_key(target_id) for target_id in self.find_relations()
        }:
            self._insert_pairs([parsed.id])
        self.value[parsed.id] = parsed
        return self

    def remove_link(self, value: Any) -> "ModelAttributeLinkThrough":
        """Delete the junction row of ``value`` without reconciling."""
        self._require_object_id()
        target_id = self._member_id(value)
        key = self._find_key(target_id)
        if key is None:
            self._target_not_linked(target_id)
            return self
        self._delete_pairs([key])
        del self.value[key]
        return self

    ######################################
    # Junction table
    ######################################

    def _scope(self) -> list[tuple[str, Any]]:
        """Column/value pairs selecting the junction rows of this object."""
        scope = [(self.relation_source_column, self.object_id)]
        if self.relation_source_type_column:
            scope.append((self.relation_source_type_column, self.source_discriminator))
        if self.relation_target_type_column:
            scope.append((self.relation_target_type_column, self.target_discriminator))
        return scope

    def find_relations(self) -> list[Any]:
        """The target ids currently linked to this object in the junction."""
        self._require_object_id()
        query = (
            self._query(self.relation_table)
            .select(self.relation_target_column)
            .no_limit()
        )
        for column, value in self._scope():
            query.where(column, value)
        return [row[self.relation_target_column] for row in query.fetch()]

    def _insert_pairs(self, target_ids: list[Any]) -> None:
        scope = self._scope()
        columns = [column for column, _ in scope] + [self.relation_target_column]
        rows = [[value for _, value in scope] + [target_id] for target_id in target_ids]
        self._require_db().insert(self.relation_table, columns, rows)

    def _delete_pairs(self, target_ids: list[Any]) -> None:
        if not target_ids:
            raise QueryBuildError("No junction rows to delete")
        scope = self._scope()
        conditions = [f"{column} = ?" for column, _ in scope]
        values = [value for _, value in scope]
        conditions.append(
            f"{self.relation_target_column} IN ({', '.join(['?'] * len(target_ids))})"
        )
        values.extend(target_ids)
        self._require_db().execute(
            f"DELETE FROM {self.relation_table} WHERE {' AND '.join(conditions)}",
            "".join(bind_kind_for(value) for value in values),
            *values,
        )

    def _persist(self) -> None:
        """Reconcile the junction rows of this object with the current value.

        Missing pairs are inserted and stale pairs deleted, rows of other
        objects are never touched. Running it again once it succeeded writes
        nothing.
        """
        self._require_object_id()
        current = {
            self._id_key(target_id): target_id for target_id in self.find_relations()
        }
        desired = {self._id_key(target_id): target_id for target_id in self.value}

        added = [desired[key] for key in desired if key not in current]
        removed = [current[key] for key in current if key not in desired]
        if added:
            self._insert_pairs(added)
        if removed:
            self._delete_pairs(removed)

        if added or removed:
            _LOGGER.debug(
                f"Synchronised {self.relation_table} for {self.model_name} "
                f"{self.object_id}",
                extra={"added": added, "removed": removed},
            )

    def _fetch_value(self) -> list[dict]:
        target_ids = self.find_relations()
        if not target_ids:
            return []
        return (
            self._target_query()
            .where_in(self.target_id_column, target_ids)
            .no_limit()
            .fetch()
        )

    def junction_columns(self) -> list[Column]:
        """Columns of the junction table: ids first, then discriminators."""

        def id_type(type: AttributeType):
            return CHAR(36) if type == AttributeType.UUID else Integer()

        columns = [
            Column(
                self.relation_source_column,
                id_type(self.model_id_type),
                nullable=False,
            ),
            Column(
                self.relation_target_column,
                id_type(self.target_id_type),
                nullable=False,
            ),
        ]
        for column in (
            self.relation_source_type_column,
            self.relation_target_type_column,
        ):
            if column:
                columns.append(Column(column, CHAR(255), nullable=False))
        return columns
