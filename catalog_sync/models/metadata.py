"""
Metadata-side records (BoardGameGeek, UPC lookup)
"""
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class SearchCandidate:
    """One BGG search hit; score is filled in by the match engine."""
    external_id: int
    name: str
    year_published: Optional[int] = None
    score: int = 0


@dataclass(frozen=True)
class MetadataDetail:
    """Full BGG thing record."""
    external_id: int
    name: str
    year_published: Optional[int] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    description_html: Optional[str] = None
    publishers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UpcLookupResult:
    """Barcode lookup result."""
    title: str
    brand: Optional[str] = None
    description: Optional[str] = None
