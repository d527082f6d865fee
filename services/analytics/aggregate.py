# services/analytics/aggregate.py
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from services.records.models import STATUS_COMPLETED, GradingRecord

BUCKET_FORMATS = {
    "minute": "%Y-%m-%d %H:%M",
    "hour": "%Y-%m-%d %H:00",
    "day": "%Y-%m-%d",
}


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def is_match(record: GradingRecord) -> Optional[bool]:
    """AI combined == technician combined; None until the record is reviewed."""
    tech = record.review.technician_combined
    if record.status != STATUS_COMPLETED or tech is None:
        return None
    return record.ai.combined == tech


@dataclass(frozen=True)
class ComparisonBucket:
    bucket: str
    count: int
    reviewed: int
    ai_combined_avg: Optional[float]
    technician_combined_avg: Optional[float]


def compare_over_time(records: Iterable[GradingRecord], bucket: str = "hour") -> List[ComparisonBucket]:
    """AI vs technician combined score per time bucket, oldest bucket first."""
    fmt = BUCKET_FORMATS[bucket]
    groups: "OrderedDict[str, List[GradingRecord]]" = OrderedDict()
    for r in sorted(records, key=lambda r: r.created_at):
        groups.setdefault(_parse_ts(r.created_at).strftime(fmt), []).append(r)

    out = []
    for key, items in groups.items():
        tech = [r.review.technician_combined for r in items if r.review.technician_combined is not None]
        out.append(
            ComparisonBucket(
                bucket=key,
                count=len(items),
                reviewed=len(tech),
                ai_combined_avg=_mean([float(r.ai.combined) for r in items]),
                technician_combined_avg=_mean([float(t) for t in tech]),
            )
        )
    return out


def confidence_distribution(records: Iterable[GradingRecord], bins: int = 10) -> Dict[str, int]:
    """Histogram of AI confidence over [0, 1], keys like '0.8-0.9'."""
    if bins <= 0:
        raise ValueError("bins must be positive")
    width = 1.0 / bins
    hist: Dict[str, int] = OrderedDict(
        (f"{i * width:.1f}-{(i + 1) * width:.1f}", 0) for i in range(bins)
    )
    labels = list(hist.keys())
    for r in records:
        c = min(max(float(r.ai.confidence), 0.0), 1.0)
        idx = min(int(round(c * bins, 9)), bins - 1)
        hist[labels[idx]] += 1
    return hist


@dataclass(frozen=True)
class MatchSummary:
    reviewed: int
    matched: int

    @property
    def rate(self) -> Optional[float]:
        return self.matched / self.reviewed if self.reviewed else None


def match_rate(records: Iterable[GradingRecord]) -> MatchSummary:
    flags = [m for m in (is_match(r) for r in records) if m is not None]
    return MatchSummary(reviewed=len(flags), matched=sum(1 for m in flags if m))


def match_series(records: Iterable[GradingRecord]) -> List[Dict[str, object]]:
    """Per reviewed record: time + 1/0 match flag, oldest first."""
    out = []
    for r in sorted(records, key=lambda r: r.created_at):
        m = is_match(r)
        if m is None:
            continue
        out.append({"time": r.created_at, "id": r.id, "match": 1 if m else 0})
    return out
