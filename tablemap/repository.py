"""
Functions a controller layer calls to read and write models.

Every read goes through ``Model.start_query`` so the caller's ownership and
the soft-delete filter always apply. Writes check the caller's edit right on
the stored row before touching it.
"""

import logging
from collections.abc import Mapping
from typing import Any

from tablemap.context import RequestContext, anonymous
from tablemap.database import Database
from tablemap.errors import AuthorisationError, NotFoundError
from tablemap.model import Model, Right
from tablemap.query import QueryLink

_LOGGER = logging.getLogger(__name__)


def find(
    db: Database,
    model_class: type[Model],
    id: Any,
    context: RequestContext | None = None,
    load_relations: bool = True,
) -> Model:
    """Get one model visible to the caller.

    :param Database db: connection to db
    :param type[Model] model_class: the kind of model to get
    :param Any id: the id of the model
    :param RequestContext | None context: the caller
    :param bool load_relations: also fetch the linked targets
    :raises NotFoundError: if no visible model has this id
    :return Model: the model
    """
    query = model_class.start_query(db, context, load_relations=load_relations)
    model = query.find(id)
    if model is None:
        raise NotFoundError(f"No {model_class.name} found with id {id}")
    return model


def query(
    db: Database,
    model_class: type[Model],
    filters: Mapping[str, Any],
    mode: str = "and",
    context: RequestContext | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[Model]:
    """Get the models matching column equality filters.

    :param Mapping[str, Any] filters: column name to value, a None value
        matches NULL and a list matches any of its values
    :param str mode: ``and`` to match every filter, ``or`` to match any
    :raises ValueError: for any other mode
    """
    try:
        link = QueryLink(mode.upper())
    except ValueError:
        raise ValueError(f"Invalid filter mode '{mode}', use 'and' or 'or'")

    model_query = model_class.start_query(db, context)
    if filters:
        clauses = [
            (column, "IN", list(value))
            if isinstance(value, (list, tuple, set))
            else (column, value)
            for column, value in filters.items()
        ]
        model_query.where_group(clauses, link)
    return model_query.fetch(limit, offset)


def list_models(
    db: Database,
    model_class: type[Model],
    context: RequestContext | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[Model]:
    model = model_class(db, load_relations=False)
    return (
        model_class.start_query(db, context)
        .order(model.id_column)
        .fetch(limit, offset)
    )


def count(
    db: Database,
    model_class: type[Model],
    filters: Mapping[str, Any] | None = None,
    context: RequestContext | None = None,
) -> int:
    model_query = model_class.start_query(db, context)
    for column, value in (filters or {}).items():
        model_query.where(column, value)
    return model_query.count()


def create(
    db: Database,
    model_class: type[Model],
    data: Mapping[str, Any],
    context: RequestContext | None = None,
) -> Model:
    """Validate and insert a new model owned by the caller.

    :return Model: the created model, or the invalid model with its messages
    """
    model = model_class(db)
    if model.create(data, context) is None:
        _LOGGER.info(f"Could not create {model_class.name}: the form is invalid")
    return model


def _editable(
    db: Database,
    model_class: type[Model],
    id: Any,
    context: RequestContext,
) -> Model:
    model = find(db, model_class, id, context)
    if not context.is_admin and not model.check_user_rights(
        Right.EDIT, context.user_id
    ):
        raise AuthorisationError(
            f"User {context.user_id} is not allowed to edit {model_class.name} {id}"
        )
    return model


def update(
    db: Database,
    model_class: type[Model],
    id: Any,
    data: Mapping[str, Any],
    context: RequestContext | None = None,
) -> Model:
    """Validate and write new values for a model the caller can edit.

    :raises NotFoundError: if no visible model has this id
    :raises AuthorisationError: if the caller can't edit the model
    :return Model: the updated model, or the invalid model with its messages
    """
    context = context or anonymous()
    model = _editable(db, model_class, id, context)
    if model.update(data, context) is None:
        _LOGGER.info(f"Could not update {model_class.name} {id}: the form is invalid")
    return model


def delete(
    db: Database,
    model_class: type[Model],
    id: Any,
    context: RequestContext | None = None,
    force: bool = False,
) -> bool:
    context = context or anonymous()
    model = _editable(db, model_class, id, context)
    return model.delete(force=force)


def check_user_rights(model: Model, right: Right | str, user_id: Any) -> bool:
    return model.check_user_rights(right, user_id)


def to_dict(model: Model) -> dict[str, Any]:
    """The formatted values of a model, with its validation messages."""
    return {
        "id": model.get_id(),
        "values": model.to_dict(),
        "is_valid": model.is_valid,
        "messages": {
            name: [
                {"severity": m.severity.value, "code": m.code, "text": m.text}
                for m in messages
            ]
            for name, messages in model.messages.items()
            if messages
        },
    }
