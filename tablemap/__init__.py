from tablemap.attribute_types import AttributeType
from tablemap.context import RequestContext
from tablemap.database import Database, get_db_context
from tablemap.model import Model, Privacy, Right
from tablemap.query import JoinType, Query, QueryLink, QueryOperator

__all__ = (
    "AttributeType",
    "Database",
    "JoinType",
    "Model",
    "Privacy",
    "Query",
    "QueryLink",
    "QueryOperator",
    "RequestContext",
    "Right",
    "get_db_context",
)
