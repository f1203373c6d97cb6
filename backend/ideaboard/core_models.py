from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

ItemType = Literal["note", "image", "link", "todo"]
ITEM_TYPES: tuple[str, ...] = ("note", "image", "link", "todo")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ItemPosition(BaseModel):
    """Free-form placement on the canvas plus stacking order."""
    model_config = ConfigDict(populate_by_name=True)

    x: float = 0.0
    y: float = 0.0
    z_index: int = Field(0, alias="zIndex")


class ItemSize(BaseModel):
    width: float = 0.0
    height: float = 0.0


class BoardItem(BaseModel):
    """A single canvas item (note, image, link or todo) in its in-memory form."""

    # Client-generated so selection/removal work before the first save completes
    id: UUID = Field(default_factory=uuid4)
    board_id: UUID
    user_id: UUID
    item_type: ItemType
    position: ItemPosition = Field(default_factory=ItemPosition)
    size: ItemSize = Field(default_factory=ItemSize)
    content: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload, opaque to the engine")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Presentation hints (color, formatting)")
    created_at: Optional[datetime] = None  # set once by the server
    updated_at: Optional[datetime] = None  # server value after every successful write


class BoardItemRecord(BaseModel):
    """Wire shape of a row in the ``board_items`` table.

    ``position``, ``size``, ``content`` and ``metadata`` travel as independently
    serialized JSON text rather than nested objects.
    """
    id: Optional[str] = None
    board_id: str
    user_id: str
    item_type: str
    position: str = "{}"
    size: str = "{}"
    content: str = "{}"
    metadata: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the REST API; ``None`` fields are left out so the store applies its defaults."""
        return self.model_dump(mode="json", exclude_none=True)
