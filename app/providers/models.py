"""Data models for token price history."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List


@dataclass(frozen=True)
class PricePoint:
    """Single price sample for a token."""
    timestamp: datetime
    price: Decimal


def normalize_series(points: Iterable[PricePoint], start: datetime, end: datetime) -> List[PricePoint]:
    """
    Order, deduplicate and clip a raw price series to [start, end].

    Samples sharing a timestamp keep the first one received.
    """
    seen = set()
    series = []
    for point in sorted(points, key=lambda p: p.timestamp):
        if point.timestamp < start or point.timestamp > end:
            continue
        if point.timestamp in seen:
            continue
        seen.add(point.timestamp)
        series.append(point)
    return series
