"""
Catalog data model: records, analysis status, corner points.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


# Canonical cost field, and the historical misspelling still present in stored records.
COST_FIELD = "average_cost"
LEGACY_COST_FIELD = "avarege_cost"
COST_FIELD_ALIASES = (COST_FIELD, LEGACY_COST_FIELD)

# Fields an automated analysis may write, in display order.
ANALYSIS_FIELDS = (
    "artist", "title", "genre", "year", "notes", "group_members", "condition",
    COST_FIELD, "tracks", "label", "catalog_number", "edition",
)

# Fields written when the full update is rejected by the store.
BASIC_FIELDS = ("artist", "title", "genre", "year")

# Max stored length per field
FIELD_LIMITS = {
    COST_FIELD: 50,
    "label": 100,
    "catalog_number": 50,
    "edition": 100,
}

# Legacy sentinel values once stored in the artist field
PENDING_SENTINEL = "Pending AI"
ERROR_SENTINEL = "Error"


class ItemStatus(Enum):
    """Analysis lifecycle of a catalog item."""

    PENDING = "Pending AI"
    ANALYZED = "Analyzed"
    FAILED = "Error"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for status in cls:
            if value == status.value or (isinstance(value, str) and value.lower() == status.name.lower()):
                return status
        return None


def parse_locked_fields(value) -> set:
    """Accept a list, a comma separated string or nothing."""
    if not value:
        return set()
    if isinstance(value, str):
        return {f.strip() for f in value.split(",") if f.strip()}
    return {str(f).strip() for f in value if str(f).strip()}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


@dataclass
class CatalogItem:
    id: str
    artist: str = ""
    title: str = ""
    year: str = ""
    genre: str = ""
    condition: str = ""
    label: str = ""
    catalog_number: str = ""
    edition: str = ""
    tracks: str = ""
    group_members: str = ""
    notes: str = ""
    average_cost: str = ""
    locked_fields: set = field(default_factory=set)
    is_price_locked: bool = False
    is_tracks_validated: bool = False
    image: str = ""
    status: ItemStatus = ItemStatus.PENDING
    collection_id: str = ""

    @classmethod
    def from_record(cls, record: Dict) -> "CatalogItem":
        """
        Build an item from a stored record.
        Reads either spelling of the cost field, and derives the status from the
        legacy artist sentinels when the record predates the status field.
        """
        artist = record.get("artist") or ""
        status = ItemStatus.parse(record.get("status"))
        if status is None:
            if artist == PENDING_SENTINEL:
                status = ItemStatus.PENDING
            elif artist == ERROR_SENTINEL:
                status = ItemStatus.FAILED
            else:
                status = ItemStatus.ANALYZED

        cost = record.get(COST_FIELD) or record.get(LEGACY_COST_FIELD) or ""
        year = record.get("year")
        return cls(
            id=str(record.get("id") or ""),
            artist=artist,
            title=record.get("title") or "",
            year="" if year is None else str(year),
            genre=record.get("genre") or "",
            condition=record.get("condition") or "",
            label=record.get("label") or "",
            catalog_number=record.get("catalog_number") or "",
            edition=record.get("edition") or "",
            tracks=record.get("tracks") or "",
            group_members=record.get("group_members") or "",
            notes=record.get("notes") or "",
            average_cost=str(cost),
            locked_fields=parse_locked_fields(record.get("locked_fields")),
            is_price_locked=_as_bool(record.get("is_price_locked")),
            is_tracks_validated=_as_bool(record.get("is_tracks_validated")),
            image=record.get("image") or "",
            status=status,
            collection_id=record.get("collectionId") or record.get("collection_id") or "",
        )

    def to_record(self) -> Dict:
        """Plain dict with canonical field names."""
        return {
            "id": self.id,
            "artist": self.artist,
            "title": self.title,
            "year": self.year,
            "genre": self.genre,
            "condition": self.condition,
            "label": self.label,
            "catalog_number": self.catalog_number,
            "edition": self.edition,
            "tracks": self.tracks,
            "group_members": self.group_members,
            "notes": self.notes,
            COST_FIELD: self.average_cost,
            "locked_fields": sorted(self.locked_fields),
            "is_price_locked": self.is_price_locked,
            "is_tracks_validated": self.is_tracks_validated,
            "image": self.image,
            "status": self.status.value,
        }

    @property
    def display_name(self) -> str:
        return self.title or "Untitled"

    @property
    def needs_analysis(self) -> bool:
        return self.status in (ItemStatus.PENDING, ItemStatus.FAILED)

    @property
    def missing_cost(self) -> bool:
        return self.status is ItemStatus.ANALYZED and not self.average_cost


def select_pending(items: List[CatalogItem]) -> List[CatalogItem]:
    """Items never analyzed, or whose last analysis failed."""
    return [i for i in items if i.needs_analysis]

def select_incomplete(items: List[CatalogItem]) -> List[CatalogItem]:
    """Analyzed items still missing a price estimate."""
    return [i for i in items if i.missing_cost]


@dataclass(frozen=True)
class CornerPoint:
    x: float
    y: float

    def scaled(self, sx: float, sy: Optional[float] = None) -> "CornerPoint":
        return CornerPoint(self.x * sx, self.y * (sx if sy is None else sy))


def parse_corners(text: str) -> List[CornerPoint]:
    """
    Parse "x1,y1,x2,y2,x3,y3,x4,y4" (TL, TR, BR, BL) into four corner points.
    """
    parts = [p for p in text.replace(";", ",").replace(" ", ",").split(",") if p]
    if len(parts) != 8:
        raise ValueError(f"Expected 8 comma separated numbers (4 corners), got {len(parts)}")
    values = [float(p) for p in parts]
    return [CornerPoint(values[i], values[i + 1]) for i in range(0, 8, 2)]
