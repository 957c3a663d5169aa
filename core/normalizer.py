# core/normalizer.py
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .logger import get_logger
from .models import (
    Candidate,
    CatalogRecord,
    InvalidItem,
    Normalized,
    ParseResult,
    Rejected,
    VariantRecord,
)

logger = get_logger(__name__)

ZERO = Decimal("0")
_INT_RE = re.compile(r"-?[0-9]+")


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        s = value.strip()
        if _INT_RE.fullmatch(s):
            return int(s)
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def parse_price(raw: Any) -> Optional[Decimal]:
    """
    Parse an upstream price ("12.50", 12.5, 12) into a Decimal.
    Returns None for anything that is not a finite, non-negative number.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        price = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price < 0:
        return None
    return price


def _normalize_variants(nodes: Any, product_id: Optional[int]) -> Tuple[List[VariantRecord], List[Decimal], int]:
    """
    Returns (variants, parsed_prices, price_warnings).
    Variants with an unparsable price are kept at zero; only successfully
    parsed prices feed the representative price.
    """
    variants: List[VariantRecord] = []
    prices: List[Decimal] = []
    warnings = 0

    if not isinstance(nodes, list):
        return variants, prices, warnings

    for node in nodes:
        if not isinstance(node, dict):
            logger.debug("Skipping malformed variant on product %s: %r", product_id, node)
            continue

        variant_id = _as_int(node.get("id"))
        price = ZERO
        if node.get("price") is not None:
            parsed = parse_price(node.get("price"))
            if parsed is None:
                warnings += 1
                logger.warning(
                    "Invalid price format for variant %s of product %s: %r",
                    variant_id, product_id, node.get("price"),
                )
            else:
                price = parsed
                prices.append(parsed)

        variants.append(
            VariantRecord(
                external_variant_id=variant_id,
                title=_as_text(node.get("title")),
                price=price,
                sku=_as_text(node.get("sku")),
                available=_as_flag(node.get("available")),
            )
        )

    return variants, prices, warnings


def normalize_item(node: Dict[str, Any]) -> Candidate:
    """
    Map one raw product node to a CatalogRecord.
    Never raises: identity problems (missing id, blank title or handle)
    come back as Rejected and are counted by the caller.
    """
    try:
        external_id = _as_int(node.get("id"))
        title = (_as_text(node.get("title")) or "").strip()
        handle = (_as_text(node.get("handle")) or "").strip()

        if external_id is None:
            logger.warning("Skipping product without a usable id: %r", node.get("id"))
            return Rejected("missing id")
        if not title or not handle:
            logger.warning("Skipping product with missing title or handle: %s", external_id)
            return Rejected("missing title or handle", external_id)

        variants, prices, warnings = _normalize_variants(node.get("variants"), external_id)
        record = CatalogRecord(
            external_id=external_id,
            title=title,
            handle=handle,
            price=min(prices) if prices else ZERO,
            category=_as_text(node.get("product_type")),
            variants=variants,
        )
        return Normalized(record, price_warnings=warnings)
    except Exception as e:
        logger.exception("Error normalizing product: %s", e)
        return Rejected(f"unexpected error: {e}")


def normalize_feed(items: Iterable[ParseResult]) -> Iterator[Candidate]:
    """Lazily normalize parsed feed entries, in order."""
    for item in items:
        if isinstance(item, InvalidItem):
            yield Rejected(item.reason)
            continue
        yield normalize_item(item.node)
