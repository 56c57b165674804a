"""
Catalog-side records

Snapshots of Square catalog objects, taken once per run.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class ItemMeta:
    """Optional hints extracted from the catalog item."""
    upc: Optional[str] = None
    year: Optional[int] = None
    publisher: Optional[str] = None


@dataclass(frozen=True)
class CatalogItem:
    """A sellable product record, immutable for the duration of a run."""
    id: str
    name: str
    has_image: bool = False
    has_description: bool = False
    category_ids: FrozenSet[str] = frozenset()
    meta: ItemMeta = field(default_factory=ItemMeta)

    @property
    def fully_synced(self) -> bool:
        return self.has_image and self.has_description

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for queue payloads and API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "has_image": self.has_image,
            "has_description": self.has_description,
            "category_ids": sorted(self.category_ids),
            "meta": {
                "upc": self.meta.upc,
                "year": self.meta.year,
                "publisher": self.meta.publisher,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogItem":
        meta = data.get("meta") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            has_image=bool(data.get("has_image", False)),
            has_description=bool(data.get("has_description", False)),
            category_ids=frozenset(data.get("category_ids") or ()),
            meta=ItemMeta(
                upc=meta.get("upc"),
                year=meta.get("year"),
                publisher=meta.get("publisher"),
            ),
        )


@dataclass
class CategoryInfo:
    """A catalog category and how this run classifies it."""
    id: str
    name: str
    is_game: bool = False
    is_excluded: bool = False


@dataclass
class CatalogReport:
    """Diagnostic breakdown of how the catalog is being filtered."""
    total_items: int = 0
    total_categories: int = 0
    game_categories_found: int = 0
    items_with_no_category: int = 0
    items_in_game_category: int = 0
    items_not_in_game_category: int = 0
    game_items_with_upc: int = 0
    game_items_without_upc: int = 0
    game_items_already_have_image: int = 0
    would_process: int = 0
    categories: List[CategoryInfo] = field(default_factory=list)
    skipped_no_category: List[str] = field(default_factory=list)
    skipped_non_game: List[str] = field(default_factory=list)
    skipped_no_upc: List[str] = field(default_factory=list)
    included_items: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        def _samples(values: List[str]):
            return values if values else "(none)"

        return {
            "summary": {
                "totalItems": self.total_items,
                "totalCategories": self.total_categories,
                "gameCategoriesFound": self.game_categories_found,
                "itemsWithNoCategory": self.items_with_no_category,
                "itemsInGameCategory": self.items_in_game_category,
                "itemsNotInGameCategory": self.items_not_in_game_category,
                "gameItemsWithUpc": self.game_items_with_upc,
                "gameItemsWithoutUpc": self.game_items_without_upc,
                "gameItemsAlreadyHaveImage": self.game_items_already_have_image,
                "wouldProcess": self.would_process,
            },
            "allCategories": [
                {"id": c.id, "name": c.name, "isGame": c.is_game, "isExcluded": c.is_excluded}
                for c in self.categories
            ],
            "samples": {
                "skippedNoCategory": _samples(self.skipped_no_category),
                "skippedNonGame": _samples(self.skipped_non_game),
                "skippedNoUpc": _samples(self.skipped_no_upc),
                "includedItems": _samples(self.included_items),
            },
        }
