"""Store catalog - static, read-only source of truth for item prices"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from reelcoin.core.exceptions import ValidationError

CATEGORIES = ("display", "comment", "content")


@dataclass(frozen=True)
class StoreItem:
    id: str
    name: str
    description: str
    price: int  # content tokens
    category: str
    consumable: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "consumable": self.consumable,
        }


STORE_ITEMS = (
    StoreItem("golden-username", "Golden Username", "Show your username in gold across the app", 5000, "display"),
    StoreItem("glowing-username", "Glowing Username", "Give your username a glow effect", 8000, "display"),
    StoreItem("creator-badge", "Creator Badge", "A badge next to your name on profile and comments", 10000, "display"),
    StoreItem("highlighted-comment", "Highlighted Comment", "Make one comment stand out in the thread", 500, "comment", consumable=True),
    StoreItem("pinned-comment", "Pinned Comment", "Pin one comment to the top of a video", 1000, "comment", consumable=True),
    StoreItem("video-boost", "Video Boost", "Boost one post in the Discover feed for 24 hours", 2000, "content", consumable=True),
    StoreItem("featured-post", "Featured Post", "Feature one post on the home feed", 8000, "content", consumable=True),
)

_ITEMS_BY_ID = {item.id: item for item in STORE_ITEMS}


def get_item(item_id: str) -> StoreItem:
    """Look up an item by id; unknown ids are a validation error"""
    item = _ITEMS_BY_ID.get(item_id)
    if item is None:
        raise ValidationError(f"Unknown store item '{item_id}'")
    return item


def list_items(category: Optional[str] = None) -> List[StoreItem]:
    if category is None:
        return list(STORE_ITEMS)
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown store category '{category}'")
    return [item for item in STORE_ITEMS if item.category == category]


def items_by_category() -> Dict[str, List[StoreItem]]:
    return {category: list_items(category) for category in CATEGORIES}
