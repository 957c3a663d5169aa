# core/feed.py
import json
from dataclasses import dataclass
from typing import Any, Iterator, List

from .errors import MalformedFeedError
from .logger import get_logger
from .models import InvalidItem, ParsedItem, ParseResult

logger = get_logger(__name__)


@dataclass
class ParsedFeed:
    """
    Envelope of a products feed.
    - total: number of entries in the 'products' array
    - items: lazy iterator of ParsedItem / InvalidItem, in feed order
    """
    total: int
    items: Iterator[ParseResult]

    def __iter__(self) -> Iterator[ParseResult]:
        return self.items


def _iter_products(products: List[Any]) -> Iterator[ParseResult]:
    for position, node in enumerate(products):
        if not isinstance(node, dict):
            logger.debug("Feed entry %d is %s, not an object.", position, type(node).__name__)
            yield InvalidItem(position, f"expected object, got {type(node).__name__}")
            continue
        yield ParsedItem(position, node)


def parse_feed(payload: str | bytes) -> ParsedFeed:
    """
    Validate the envelope eagerly and hand back a lazy item sequence.
    Raises MalformedFeedError before anything is yielded when the body is
    not JSON or not an object with a 'products' array.
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedFeedError(f"feed body is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFeedError("feed body must be a JSON object")

    products = data.get("products")
    if not isinstance(products, list):
        raise MalformedFeedError("invalid response format - products array not found")

    return ParsedFeed(total=len(products), items=_iter_products(products))
