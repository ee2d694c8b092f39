from tablemap.attributes.base import AbstractModelAttribute, Message, Severity
from tablemap.attributes.link import ModelAttributeLink
from tablemap.attributes.link_through import ModelAttributeLinkThrough
from tablemap.attributes.scalar import ModelAttribute
from tablemap.attributes.values import Resolved, Unresolved

__all__ = (
    "AbstractModelAttribute",
    "Message",
    "ModelAttribute",
    "ModelAttributeLink",
    "ModelAttributeLinkThrough",
    "Resolved",
    "Severity",
    "Unresolved",
)
