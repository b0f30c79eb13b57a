"""Tag Log — append-only record of named actions on target entities."""
from .tag_handler import TagHandler, EnvTagHandler, Tag, TagValue, TagTargetType

__all__ = ["TagHandler", "EnvTagHandler", "Tag", "TagValue", "TagTargetType"]
