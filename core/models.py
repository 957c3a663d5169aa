import datetime
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union


@dataclass
class VariantRecord:
    external_variant_id: Optional[int] = None
    title: Optional[str] = None
    price: Decimal = Decimal("0")
    sku: Optional[str] = None
    available: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "external_variant_id": self.external_variant_id,
            "title": self.title,
            "price": str(self.price),
            "sku": self.sku,
            "available": self.available,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VariantRecord":
        return cls(
            external_variant_id=data.get("external_variant_id"),
            title=data.get("title"),
            price=Decimal(str(data.get("price") or "0")),
            sku=data.get("sku"),
            available=bool(data.get("available")),
        )


@dataclass
class CatalogRecord:
    """
    Locally persisted product.
    local_id/created_at/updated_at are owned by the store; price is always
    derived from the variants by the normalizer on the sync path.
    """
    external_id: Optional[int]
    title: str
    handle: str
    price: Decimal = Decimal("0")
    category: Optional[str] = None
    variants: List[VariantRecord] = field(default_factory=list)
    local_id: Optional[int] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


@dataclass
class ParsedItem:
    """A raw product node taken from the feed envelope."""
    position: int
    node: Dict[str, Any]


@dataclass
class InvalidItem:
    position: int
    reason: str


@dataclass
class Normalized:
    record: CatalogRecord
    price_warnings: int = 0


@dataclass
class Rejected:
    reason: str
    external_id: Optional[int] = None


ParseResult = Union[ParsedItem, InvalidItem]
Candidate = Union[Normalized, Rejected]


@dataclass
class SyncReport:
    received: int = 0
    examined: int = 0
    inserted: int = 0
    updated: int = 0
    skipped_invalid: int = 0
    skipped_at_capacity: int = 0
    price_warnings: int = 0
    pruned: int = 0
    final_count: int = 0
    started_at: Optional[datetime.datetime] = None
    finished_at: Optional[datetime.datetime] = None

    @property
    def duration_seconds(self) -> float:
        if not self.started_at or not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["started_at"] = self.started_at.isoformat() if self.started_at else None
        out["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        out["duration_seconds"] = self.duration_seconds
        return out
