"""
Archive items and the persisted document.

The archive is not stored in the database: the whole document lives in one JSON file
(see services/store.py). These classes are the in-memory shapes; to_dict() produces the
camelCase wire format.
"""

from dataclasses import dataclass, field
from typing import ClassVar

MEMORY_DEFAULT_WIDTH = 300
MEMORY_DEFAULT_HEIGHT = 280
THOUGHT_DEFAULT_WIDTH = 280
THOUGHT_DEFAULT_HEIGHT = 220
WIDGET_MIN_WIDTH = 200
WIDGET_MIN_HEIGHT = 150
FLAVOR_TEXT_MAX_LENGTH = 60
DEFAULT_DIVIDER_LABEL = "Новый раздел"


@dataclass
class MemoryWidget:
    id: str
    order: int
    image_data: str = ""
    caption: str = ""
    created_at: str = ""
    width: int = MEMORY_DEFAULT_WIDTH
    height: int = MEMORY_DEFAULT_HEIGHT

    type: ClassVar[str] = "memory"

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "imageData": self.image_data,
            "caption": self.caption,
            "createdAt": self.created_at,
            "width": self.width,
            "height": self.height,
            "order": self.order,
        }

    def __str__(self):
        return self.caption or f"memory {self.id}"


@dataclass
class ThoughtWidget:
    id: str
    order: int
    title: str = ""
    content: str = ""
    flavor_text: str = ""
    created_at: str = ""
    width: int = THOUGHT_DEFAULT_WIDTH
    height: int = THOUGHT_DEFAULT_HEIGHT

    type: ClassVar[str] = "thought"

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "content": self.content,
            "flavorText": self.flavor_text,
            "createdAt": self.created_at,
            "width": self.width,
            "height": self.height,
            "order": self.order,
        }

    def __str__(self):
        return self.title or f"thought {self.id}"


@dataclass
class DividerItem:
    id: str
    order: int
    label: str = DEFAULT_DIVIDER_LABEL
    collapsed: bool = False

    type: ClassVar[str] = "divider"

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "collapsed": self.collapsed,
            "order": self.order,
        }

    def __str__(self):
        return self.label


def is_divider(item) -> bool:
    return item.type == DividerItem.type


@dataclass
class AppData:
    """Root of the persisted document."""

    items: list = field(default_factory=list)
    custom_phrases: list = field(default_factory=list)

    def to_dict(self):
        return {
            "items": [item.to_dict() for item in self.items],
            "customPhrases": list(self.custom_phrases),
        }

    def widgets(self) -> list:
        """Non-divider items in stored order."""
        return [item for item in self.items if not is_divider(item)]

    def find(self, item_id):
        """Return (index, item) for item_id, or (-1, None)."""
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index, item
        return -1, None
