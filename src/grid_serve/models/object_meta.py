from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---- cache tag format ----
TAG_SEPARATOR: str = "_"


class ObjectMetadata(BaseModel):
    """Read-only view of one stored file's metadata record."""

    id: Any = Field(..., description="Backend identity, e.g. a BSON ObjectId")
    name: str
    size: int = Field(..., ge=0)
    content_hash: Optional[str] = None  # md5 hex digest
    content_type: Optional[str] = None

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        frozen=True,
    )

    @property
    def identity(self) -> str:
        return str(self.id)

    def cache_tag(self) -> Optional[str]:
        if not self.content_hash:
            return None
        return f"{self.identity}{TAG_SEPARATOR}{self.content_hash}"
