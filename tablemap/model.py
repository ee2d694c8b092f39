"""
The model: an ordered set of attributes mapped onto one table.

Concrete models set ``name`` (and optionally ``bundle``) and declare their
attributes in the ``model()`` hook::

    class Article(Model):
        name = "article"

        def model(self):
            self.attribute("title", AttributeType.CHAR, required=True)
            self.attribute("published_on", AttributeType.DATE)
            self.link_to(Author)
            self.link_through(Tag, name="tags")

Unless the hook declares them, every model gets an auto-increment ``id``
column, an owner column ``user_id`` and the ``created_at``, ``updated_at`` and
``deleted_at`` timestamps.
"""

import logging
import uuid
from collections.abc import Mapping
from enum import Enum
from typing import Any, ClassVar

from tablemap.attribute_types import AttributeType
from tablemap.attributes import (
    AbstractModelAttribute,
    ModelAttribute,
    ModelAttributeLink,
    ModelAttributeLinkThrough,
)
from tablemap.attributes.base import table_prefix
from tablemap.context import RequestContext, anonymous
from tablemap.database import Database
from tablemap.errors import (
    AuthorisationError,
    ModelDefinitionError,
    ObjectIdNotSetError,
)
from tablemap.model_query import ModelQuery
from tablemap.query import Query, QueryOperator, bind_kind_for

_LOGGER = logging.getLogger(__name__)


class Privacy(str, Enum):
    PUBLIC = "public"
    LOGGED_IN = "logged_in"
    PROTECTED = "protected"
    ADMIN = "admin"


class Right(str, Enum):
    VIEW = "view"
    EDIT = "edit"


class Model:
    name: ClassVar[str]
    bundle: ClassVar[str] = "default"

    def __init__(self, db: Database | None = None, load_relations: bool = True):
        """Declare the model's attributes.

        :param Database | None db: the database the model reads and writes
        :param bool load_relations: declare the link attributes; disabled when
            the model is only the target of another model's link
        """
        self.db = db
        self.load_relations = load_relations

        self.table: str | None = None
        self.attributes: dict[str, AbstractModelAttribute] = {}
        self._links_by_target: dict[type, str] = {}
        self._is_initialized = False

        self.id_column = "id"
        self.id_name = "id"
        self.id_type = AttributeType.ID
        self.user_column: str | None = None
        self.can_view = Privacy.PUBLIC
        self.can_edit = Privacy.PUBLIC
        self.created_at_column: str | None = None
        self.updated_at_column: str | None = None
        self.deleted_at_column: str | None = None
        self._has_id = False
        self._has_user = False
        self._has_timestamps = False

        self._id: Any = None
        self.is_instantiated = False
        self.is_valid = True
        self.messages: dict[str, list] = {"all": []}
        self._dirty_links: set[str] = set()
        self._unloaded_columns: set[str] = set()

        self.model()
        if not self._has_id:
            self.id()
        if not self._has_user:
            self.user()
        if not self._has_timestamps:
            self.timestamps()
        self._finalize()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id_column}={self._id!r}>"

    def model(self) -> None:
        """Declare the attributes of the model. Overridden by every model."""

    @classmethod
    def get_name(cls) -> str:
        return cls.name

    ######################################
    # Declaration
    ######################################

    def _initialize(self) -> None:
        if self._is_initialized:
            return
        if not getattr(type(self), "name", None):
            raise ModelDefinitionError(
                f"The model {type(self).__name__} does not define its name"
            )
        if self.table is None:
            self.table = f"{table_prefix(self.bundle)}{self.name}s"
        self._is_initialized = True

    def _attribute_kwargs(self) -> dict[str, Any]:
        return {
            "db": self.db,
            "model_name": self.name,
            "model_table": self.table,
            "model_id_column": self.id_column,
            "bundle": self.bundle,
        }

    def _register(self, attribute: AbstractModelAttribute) -> AbstractModelAttribute:
        if attribute.name in self.attributes:
            raise ModelDefinitionError(
                f"The attribute '{attribute.name}' has already been defined on "
                f"{self.name}"
            )
        self.attributes[attribute.name] = attribute
        return attribute

    def _check_link_target(self, target: type) -> None:
        if not isinstance(target, type) or not issubclass(target, Model):
            raise ModelDefinitionError("The target of a link must be a Model subclass")
        if target in self._links_by_target:
            raise ModelDefinitionError(
                f"A link to {target.__name__} has already been defined on {self.name}"
            )

    def set_table(self, table: str) -> None:
        """Use ``table`` instead of the conventional table name.

        :raises ModelDefinitionError: if attributes have already been declared
        """
        if self._is_initialized:
            raise ModelDefinitionError(
                "The table needs to be defined before any attribute"
            )
        self.table = table

    def attribute(
        self,
        name: str,
        type: AttributeType = AttributeType.CHAR,
        required: bool = False,
        default: Any = None,
        column: str | None = None,
    ) -> ModelAttribute | None:
        self._initialize()
        type = AttributeType(type)
        if type == AttributeType.RELATION:
            raise ModelDefinitionError(
                "The attribute type 'relation' is not allowed, use link_to, "
                "linked_to or link_through instead"
            )
        if type.is_id:
            self.id(name, type, column)
            return self.attributes[name]

        return self._register(
            ModelAttribute(
                name,
                type,
                is_required=required,
                default_value=default,
                target_column=column or name,
                **self._attribute_kwargs(),
            )
        )

    def id(
        self,
        name: str = "id",
        type: AttributeType = AttributeType.ID,
        column: str | None = None,
    ) -> "Model":
        """Declare the id attribute: an auto-increment integer or a uuid.

        The id is not declared required, it only gets a value once the row
        exists.
        """
        self._initialize()
        if self._has_id:
            raise ModelDefinitionError(
                f"An id attribute has already been defined on {self.name}"
            )
        type = AttributeType(type)
        if not type.is_id:
            raise ModelDefinitionError(
                "The id attribute must be of type 'id' or 'uuid'"
            )

        self.id_name = name
        self.id_column = column or name
        self.id_type = type
        self._register(
            ModelAttribute(
                name, type, target_column=self.id_column, **self._attribute_kwargs()
            )
        )
        self._has_id = True
        return self

    def user(
        self,
        column: str | None = "user_id",
        can_view: Privacy = Privacy.PROTECTED,
        can_edit: Privacy = Privacy.PROTECTED,
    ) -> "Model":
        """Declare the owner column, or make the model public with ``user(None)``."""
        self._initialize()
        if self._has_user:
            raise ModelDefinitionError(
                f"A user attribute has already been defined on {self.name}"
            )
        self._has_user = True

        if column is None:
            self.user_column = None
            self.can_view = Privacy.PUBLIC
            self.can_edit = Privacy.PUBLIC
            return self

        self._register(
            ModelAttribute(
                column, AttributeType.INT, is_required=True, **self._attribute_kwargs()
            )
        )
        self.user_column = column
        self.can_view = Privacy(can_view)
        self.can_edit = Privacy(can_edit)
        return self

    def timestamps(
        self,
        enabled: bool = True,
        created_at: str | None = "created_at",
        updated_at: str | None = "updated_at",
        deleted_at: str | None = "deleted_at",
    ) -> "Model":
        """Declare the creation, update and soft-delete timestamps.

        ``timestamps(False)`` disables all three, a None name disables one.
        """
        self._initialize()
        if self._has_timestamps:
            raise ModelDefinitionError(
                f"Timestamps have already been defined on {self.name}"
            )

        self.created_at_column = self._timestamp(enabled, created_at, required=True)
        self.updated_at_column = self._timestamp(enabled, updated_at, required=True)
        self.soft_delete(enabled, deleted_at)
        self._has_timestamps = True
        return self

    def soft_delete(
        self, enabled: bool = True, column: str | None = "deleted_at"
    ) -> "Model":
        """Delete by stamping ``column`` instead of removing the row."""
        self._initialize()
        if self.deleted_at_column and self.deleted_at_column != column:
            self.attributes.pop(self.deleted_at_column, None)
        self.deleted_at_column = self._timestamp(enabled, column, required=False)
        return self

    def _timestamp(
        self, enabled: bool, column: str | None, required: bool
    ) -> str | None:
        if not enabled or column is None:
            if column is not None:
                self.attributes.pop(column, None)
            return None
        if column not in self.attributes:
            self._register(
                ModelAttribute(
                    column,
                    AttributeType.DATETIME,
                    is_required=required,
                    **self._attribute_kwargs(),
                )
            )
        return column

    def link_to(
        self,
        target: type["Model"],
        name: str | None = None,
        required: bool = False,
        column: str | None = None,
    ) -> ModelAttributeLink | None:
        """Declare a link whose foreign key ``<target>_id`` is in this model's table."""
        if not self.load_relations:
            return None
        self._initialize()
        self._check_link_target(target)
        name = name or target.name
        attribute = ModelAttributeLink(
            name,
            target=target,
            is_inversed=False,
            is_required=required,
            target_column=column or f"{target.name}_id",
            **self._attribute_kwargs(),
        )
        self._register(attribute)
        self._links_by_target[target] = name
        return attribute

    def linked_to(
        self,
        target: type["Model"],
        name: str | None = None,
        n_links: str = "one",
        required: bool = False,
        target_column: str | None = None,
    ) -> ModelAttributeLink | None:
        """Declare the inverse side of a link: the foreign key ``<this>_id`` is
        in the target's table."""
        if not self.load_relations:
            return None
        self._initialize()
        self._check_link_target(target)
        name = name or target.name
        attribute = ModelAttributeLink(
            name,
            target=target,
            is_inversed=True,
            n_links=n_links,
            is_required=required,
            target_column=target_column or f"{self.name}_id",
            **self._attribute_kwargs(),
        )
        self._register(attribute)
        self._links_by_target[target] = name
        return attribute

    def link_through(
        self,
        target: type["Model"],
        name: str | None = None,
        is_many: bool = True,
        is_inversed: bool = False,
        relation_table: str | None = None,
        relation_source_column: str | None = None,
        relation_target_column: str | None = None,
        relation_source_type_column: str | None = None,
        relation_target_type_column: str | None = None,
    ) -> ModelAttributeLinkThrough | None:
        """Declare a many-to-many link through a junction table."""
        if not self.load_relations:
            return None
        self._initialize()
        self._check_link_target(target)
        name = name or target.name
        attribute = ModelAttributeLinkThrough(
            name,
            target=target,
            is_inversed=is_inversed,
            is_many=is_many,
            model_id_type=self.id_type,
            relation_table=relation_table,
            relation_source_column=relation_source_column,
            relation_target_column=relation_target_column,
            relation_source_type_column=relation_source_type_column,
            relation_target_type_column=relation_target_type_column,
            **self._attribute_kwargs(),
        )
        self._register(attribute)
        self._links_by_target[target] = name
        return attribute

    def _finalize(self) -> None:
        timestamp_columns = {
            self.created_at_column,
            self.updated_at_column,
            self.deleted_at_column,
        }
        for attribute in self.attributes.values():
            attribute.model_id_column = self.id_column
            if isinstance(attribute, ModelAttributeLinkThrough):
                attribute.model_id_type = self.id_type
            if (
                attribute.is_stored_in_model_table
                and attribute.updated_at_column is None
                and attribute.name not in timestamp_columns
                and not attribute.type.is_id
            ):
                attribute.updated_at_column = self.updated_at_column

    ######################################
    # Accessors
    ######################################

    def get_id(self) -> Any:
        return self._id

    def get_attribute(self, name: str) -> AbstractModelAttribute:
        """
        :raises ModelDefinitionError: if no attribute has this name
        """
        try:
            return self.attributes[name]
        except KeyError:
            raise ModelDefinitionError(
                f"The attribute '{name}' is not defined on {self.name}"
            ) from None

    def get(self, name: str, as_native: bool = False) -> Any:
        return self.get_attribute(name).get(as_native)

    def table_attributes(self) -> list[AbstractModelAttribute]:
        """The attributes owning a column of the model table, id first."""
        attributes = [
            attribute
            for attribute in self.attributes.values()
            if attribute.is_stored_in_model_table
        ]
        attributes.sort(key=lambda attribute: attribute.name != self.id_name)
        return attributes

    def _require_db(self) -> Database:
        if self.db is None:
            raise ModelDefinitionError(f"The {self.name} model has no database")
        return self.db

    def _require_instantiated(self) -> None:
        if not self.is_instantiated or self._id is None:
            raise ObjectIdNotSetError(f"This {self.name} has not been saved or loaded")

    def _skips_unloaded(self, attribute: AbstractModelAttribute) -> bool:
        """Whether the row this model came from did not carry the column."""
        return attribute.target_column in self._unloaded_columns

    def _record_messages(self, attribute: AbstractModelAttribute) -> bool:
        """Copy an attribute's messages onto the model.

        :return bool: False when the attribute reported an error
        """
        self.messages[attribute.name] = list(attribute.messages)
        if attribute.has_errors:
            self.is_valid = False
            return False
        return True

    def _reset_messages(self) -> None:
        self.messages = {"all": []}
        self.is_valid = True

    def set_id_in_properties(self) -> None:
        for attribute in self.attributes.values():
            attribute.set_id(self._id)

    ######################################
    # Validation
    ######################################

    def _is_framework_managed(self, attribute: AbstractModelAttribute) -> bool:
        return (
            attribute.type.is_id
            or attribute.name
            in (self.created_at_column, self.updated_at_column, self.deleted_at_column)
            or attribute.is_inversed
            or attribute.is_link_through
        )

    def check_form(
        self, data: Mapping[str, Any], is_update: bool = False
    ) -> "Model | None":
        """Validate user input against every user-editable attribute.

        Values are looked up by attribute name, then by column name. For a
        link, a raw foreign key is looked up in the target table.

        :param Mapping[str, Any] data: the submitted values
        :param bool is_update: apply the update rules for required attributes
        :return Model | None: the model, or None if any attribute has an error
        """
        self._reset_messages()
        for attribute in self.attributes.values():
            if self._is_framework_managed(attribute):
                continue

            value = data.get(attribute.name)
            if value is None:
                value = data.get(attribute.target_column)

            if is_update:
                attribute.update(value, self._id)
            else:
                attribute.create(value)
            self._record_messages(attribute)

        if not self.is_valid:
            _LOGGER.info(
                f"Invalid {self.name} form",
                extra={
                    "errors": {
                        name: [m.code for m in messages]
                        for name, messages in self.messages.items()
                        if name != "all" and messages
                    }
                },
            )
            return None
        return self

    ######################################
    # Persistence
    ######################################

    def create(
        self,
        data: Mapping[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> "Model | None":
        """Insert the model, then synchronise its inversed and through links.

        :param Mapping | None data: user input, validated with ``check_form``
        :param RequestContext | None context: the caller, owner of the new row
        :return Model | None: the model, or None when validation failed
        """
        context = context or anonymous()
        db = self._require_db()
        if self.is_instantiated:
            raise ModelDefinitionError(f"This {self.name} has already been created")

        if data is not None:
            data = dict(data)
            if self.user_column and context.user_id is not None:
                data.setdefault(self.user_column, context.user_id)
            if self.check_form(data) is None:
                return None
        elif self.user_column and context.user_id is not None:
            owner = self.attributes[self.user_column]
            if owner.value is None:
                owner.create(context.user_id)
                self._record_messages(owner)

        if not self.is_valid:
            return None

        now = context.now().replace(microsecond=0)
        columns: list[str] = []
        bind_kinds = ""
        values: list[Any] = []

        for attribute in self.attributes.values():
            if attribute.type == AttributeType.ID:
                continue
            if attribute.is_link:
                if attribute.is_stored_in_model_table:
                    target_id = attribute.get_target_id()
                    columns.append(attribute.target_column)
                    bind_kinds += bind_kind_for(target_id)
                    values.append(target_id)
                continue
            if attribute.type == AttributeType.UUID and not attribute.value:
                attribute.create(str(uuid.uuid4()))
            if attribute.name in (self.created_at_column, self.updated_at_column):
                attribute.create(now)

            columns.append(attribute.target_column)
            bind_kinds += attribute.bind_kind
            values.append(attribute.sql_value())

        placeholders = ", ".join(["?"] * len(columns))
        last_id = db.execute(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})",
            bind_kinds,
            *values,
        )

        if self.id_type == AttributeType.ID:
            self._id = last_id
            self.attributes[self.id_name].value = last_id
        else:
            self._id = self.attributes[self.id_name].value
        self.set_id_in_properties()
        self.is_instantiated = True

        for attribute in self.attributes.values():
            if not attribute.is_stored_in_model_table and attribute.value:
                attribute.save()
        self._dirty_links.clear()

        _LOGGER.info(f"Created {self.name} {self._id}")
        return self

    def update(
        self,
        data: Mapping[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> "Model | None":
        """Write every column in one UPDATE, then synchronise the changed links.

        :param Mapping | None data: user input, validated with ``check_form``
        :param RequestContext | None context: the caller, for the update time
        :return Model | None: the model, or None when validation failed
        """
        context = context or anonymous()
        db = self._require_db()
        self._require_instantiated()

        if data is not None and self.check_form(data, is_update=True) is None:
            return None
        if not self.is_valid:
            return None

        now = context.now().replace(microsecond=0)
        assignments: list[str] = []
        bind_kinds = ""
        values: list[Any] = []

        for attribute in self.attributes.values():
            if attribute.type.is_id or attribute.name == self.created_at_column:
                continue
            if attribute.is_link:
                if attribute.is_stored_in_model_table:
                    target_id = attribute.get_target_id()
                    if target_id is None and self._skips_unloaded(attribute):
                        continue
                    assignments.append(f"{attribute.target_column} = ?")
                    bind_kinds += bind_kind_for(target_id)
                    values.append(target_id)
                continue
            if attribute.name == self.updated_at_column:
                attribute.update(now, self._id)
            elif attribute.value is None and self._skips_unloaded(attribute):
                continue

            assignments.append(f"{attribute.target_column} = ?")
            bind_kinds += attribute.bind_kind
            values.append(attribute.sql_value())

        bind_kinds += bind_kind_for(self._id)
        values.append(self._id)
        if assignments:
            db.execute(
                f"UPDATE {self.table} SET {', '.join(assignments)} "
                f"WHERE {self.id_column} = ?",
                bind_kinds,
                *values,
            )

        for name in sorted(self._dirty_links):
            self.attributes[name].save()
        self._dirty_links.clear()

        _LOGGER.info(f"Updated {self.name} {self._id}")
        return self

    @classmethod
    def load(
        cls, db: Database, id: Any, load_relations: bool = False
    ) -> "Model | None":
        """Load the row with this id, soft-deleted or not.

        :param Database db: the database to read from
        :param Any id: the id of the row
        :param bool load_relations: also fetch the linked targets
        :return Model | None: the model, or None if no row has this id
        """
        if id is None:
            raise ValueError(f"The id of the {cls.name} to load must be provided")
        model = cls(db)
        row = Query.from_table(db, model.table).where(model.id_column, id).first()
        if row is None:
            return None
        return model.load_from_row(row, load_relations)

    def load_from_row(
        self, row: Mapping[str, Any], load_relations: bool = False
    ) -> "Model":
        """Fill the model from a row of its table.

        Columns missing from the row are left empty. Foreign keys are kept as
        unresolved relation values unless ``load_relations`` is set.
        """
        if self.id_column not in row:
            raise ValueError(
                f"The row does not contain the id column '{self.id_column}' of "
                f"{self.name}"
            )
        self._id = row[self.id_column]
        self._unloaded_columns = {
            attribute.target_column
            for attribute in self.attributes.values()
            if attribute.is_stored_in_model_table
            and attribute.target_column not in row
        }

        for attribute in self.attributes.values():
            if isinstance(attribute, ModelAttributeLink) and not attribute.is_inversed:
                if load_relations:
                    attribute.load_from_value(
                        row.get(attribute.target_column), self._id
                    )
                else:
                    attribute.load_reference(row.get(attribute.target_column), self._id)
            elif attribute.is_link:
                attribute.set_id(self._id)
                if load_relations:
                    attribute.load(self._id)
            elif attribute.target_column in row:
                attribute.load_from_value(row[attribute.target_column], self._id)
            else:
                attribute.set_id(self._id)

        self.is_instantiated = True
        return self

    def delete(self, force: bool = False) -> bool:
        """Soft delete the row, or remove it when forced or not soft deletable."""
        db = self._require_db()
        self._require_instantiated()

        if self.deleted_at_column and not force:
            deleted_at = self.attributes[self.deleted_at_column]
            deleted_at.update(anonymous().now().replace(microsecond=0), self._id)
            db.execute(
                f"UPDATE {self.table} SET {deleted_at.target_column} = ? "
                f"WHERE {self.id_column} = ?",
                "s" + bind_kind_for(self._id),
                deleted_at.sql_value(),
                self._id,
            )
            _LOGGER.info(f"Soft deleted {self.name} {self._id}")
            return True

        db.execute(
            f"DELETE FROM {self.table} WHERE {self.id_column} = ?",
            bind_kind_for(self._id),
            self._id,
        )
        _LOGGER.info(f"Deleted {self.name} {self._id}")
        return True

    ######################################
    # Attribute and link helpers
    ######################################

    def set(self, name: str, value: Any, persist_now: bool = False) -> "Model | None":
        """Validate a new value for one attribute, optionally saving it now."""
        attribute = self.get_attribute(name)
        attribute.update(value, self._id, persist_now and self.is_instantiated)
        is_remote_link = attribute.is_link and not attribute.is_stored_in_model_table
        if is_remote_link and not persist_now:
            self._dirty_links.add(name)
        if not self._record_messages(attribute):
            return None
        return self

    def fetch(self, name: str) -> Any:
        """Read one attribute from the database."""
        self._require_instantiated()
        return self.get_attribute(name).load(self._id).get(as_native=True)

    def _link_attribute(self, target: "Model") -> AbstractModelAttribute:
        name = self._links_by_target.get(type(target))
        if name is None:
            raise ModelDefinitionError(
                f"No link to {type(target).__name__} has been defined on {self.name}"
            )
        return self.attributes[name]

    def link(self, target: "Model", persist_now: bool = True) -> "Model | None":
        """Add ``target`` to the link declared towards its model."""
        attribute = self._link_attribute(target)
        attribute.add(target, persist_now and self.is_instantiated)
        if not persist_now and not attribute.is_stored_in_model_table:
            self._dirty_links.add(attribute.name)
        if not self._record_messages(attribute):
            return None
        return self

    def remove_link(self, target: "Model", persist_now: bool = True) -> "Model | None":
        attribute = self._link_attribute(target)
        attribute.remove(target, persist_now and self.is_instantiated)
        if not persist_now and not attribute.is_stored_in_model_table:
            self._dirty_links.add(attribute.name)
        if not self._record_messages(attribute):
            return None
        return self

    def remove_all_links(self, name: str, persist_now: bool = True) -> "Model | None":
        attribute = self.get_attribute(name)
        if not attribute.is_link:
            raise ModelDefinitionError(f"'{name}' is not a link of {self.name}")
        return self.set(name, None, persist_now)

    ######################################
    # Rights and serialisation
    ######################################

    def check_user_rights(self, right: Right | str, user_id: Any) -> bool:
        """Whether ``user_id`` may view or edit this row.

        :raises ValueError: if ``right`` is neither view nor edit
        """
        try:
            right = Right(right)
        except ValueError:
            raise ValueError(
                "Invalid right: the right must be either 'view' or 'edit', not "
                f"{right!r}"
            ) from None

        if self.user_column is None:
            return True
        privacy = self.can_view if right == Right.VIEW else self.can_edit
        if privacy == Privacy.PUBLIC:
            return True
        if privacy == Privacy.LOGGED_IN:
            return user_id is not None
        owner_id = self.get(self.user_column, as_native=True)
        return user_id is not None and owner_id == user_id

    def to_dict(self) -> dict[str, Any]:
        return {name: attribute.get() for name, attribute in self.attributes.items()}

    ######################################
    # Queries
    ######################################

    @classmethod
    def start_query(
        cls,
        db: Database,
        context: RequestContext | None = None,
        load_relations: bool = False,
    ) -> ModelQuery:
        """Start a query on the model's table for the given caller.

        Rows of other owners are filtered out when the view privacy requires
        ownership, and soft-deleted rows are always filtered out.

        :raises AuthorisationError: if the caller can't view this model at all
        """
        context = context or anonymous()
        query = ModelQuery(db, cls, load_relations=load_relations)
        model = query.model

        if model.user_column is not None and not context.is_admin:
            if model.can_view == Privacy.ADMIN:
                raise AuthorisationError(f"Only administrators can view {cls.name}")
            if model.can_view in (Privacy.LOGGED_IN, Privacy.PROTECTED):
                if not context.is_logged_in:
                    raise AuthorisationError(
                        f"You need to be logged in to view {cls.name}"
                    )
            if model.can_view == Privacy.PROTECTED:
                query.restrict(model.user_column, context.user_id)

        if model.deleted_at_column is not None:
            query.restrict(model.deleted_at_column, QueryOperator.IS_NULL, None)
        return query
