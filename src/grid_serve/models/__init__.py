from .object_meta import (
    ObjectMetadata,
    TAG_SEPARATOR,
)
__all__ = [
    "ObjectMetadata",
    "TAG_SEPARATOR",
]
