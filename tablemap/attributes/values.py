from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Unresolved:
    """A relation member known only by its target id."""

    id: Any


@dataclass(frozen=True)
class Resolved:
    """A relation member whose target row has been loaded.

    ``entity`` is a model instance when the relation targets a model class,
    or the raw row mapping when it targets a table.
    """

    id: Any
    entity: Any


RelationValue = Unresolved | Resolved


def format_relation(value: RelationValue | None, id_column: str) -> dict | None:
    """Serialise a relation member for display.

    :param RelationValue | None value: the member
    :param str id_column: key used for unresolved members
    :return dict | None: the target as a dictionary
    """
    match value:
        case None:
            return None
        case Unresolved(id=target_id):
            return {id_column: target_id}
        case Resolved(entity=entity) if isinstance(entity, Mapping):
            return dict(entity)
        case Resolved(entity=entity):
            return entity.to_dict()
    raise TypeError(f"Not a relation value: {value!r}")
