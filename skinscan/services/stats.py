"""Per-user dashboard statistics computed on demand from stored detections."""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from skinscan.models import Detection

MONTH_NAMES = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]
WINDOWS = ("calendar_year", "trailing")
TOP_CONDITIONS = 5
UNKNOWN_CONDITION = "Unknown"


def format_accuracy_rate(avg: float | None) -> str:
    """Render a 0..1 average as a percentage with one decimal, or ``"0%"``."""
    if avg is None or not math.isfinite(avg):
        return "0%"
    pct = Decimal(repr(float(avg) * 100)).quantize(
        Decimal("0.1"), rounding=ROUND_HALF_UP
    )
    return f"{pct}%"


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def window_months(now: datetime, window: str = "calendar_year") -> list[tuple[int, int]]:
    """Return the twelve ``(year, month)`` pairs covered by ``window``."""
    if window == "calendar_year":
        return [(now.year, month) for month in range(1, 13)]
    if window != "trailing":
        raise ValueError(f"Unknown monthly window: {window!r}")
    months = []
    year, month = now.year, now.month
    for _ in range(12):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months


def month_buckets(
    timestamps: Iterable[datetime],
    now: datetime,
    window: str = "calendar_year",
) -> list[dict[str, Any]]:
    months = window_months(_as_utc(now), window)
    counts = Counter()
    for ts in timestamps:
        ts = _as_utc(ts)
        counts[(ts.year, ts.month)] += 1
    return [
        {"month": MONTH_NAMES[month - 1], "year": year, "scans": counts[(year, month)]}
        for year, month in months
    ]


def compute_dashboard_stats(
    db: Session,
    user_id: str,
    *,
    now: datetime | None = None,
    window: str = "calendar_year",
) -> dict[str, Any]:
    now = _as_utc(now or datetime.now(timezone.utc))
    owned = Detection.user_id == user_id

    total = db.execute(
        select(func.count(Detection.id)).where(owned)
    ).scalar_one()

    detected = db.execute(
        select(func.count(distinct(Detection.condition))).where(
            owned, Detection.condition.is_not(None), Detection.condition != ""
        )
    ).scalar_one()

    avg_confidence = db.execute(
        select(func.avg(Detection.confidence)).where(
            owned, Detection.confidence.is_not(None)
        )
    ).scalar()

    first_year, first_month = window_months(now, window)[0]
    since = datetime(first_year, first_month, 1)
    timestamps = db.execute(
        select(Detection.created_at).where(owned, Detection.created_at >= since)
    ).scalars().all()

    count_col = func.count(Detection.id).label("cnt")
    rows = db.execute(
        select(Detection.condition, count_col)
        .where(owned)
        .group_by(Detection.condition)
        .order_by(count_col.desc(), func.min(Detection.id).asc())
        .limit(TOP_CONDITIONS)
    ).all()

    return {
        "totalScans": int(total),
        "detectedConditions": int(detected),
        "accuracyRate": format_accuracy_rate(avg_confidence),
        "monthlyScans": month_buckets(timestamps, now, window),
        "conditionsOverview": [
            {"name": condition or UNKNOWN_CONDITION, "value": int(cnt)}
            for condition, cnt in rows
        ],
    }


__all__ = [
    "MONTH_NAMES",
    "WINDOWS",
    "compute_dashboard_stats",
    "format_accuracy_rate",
    "month_buckets",
    "window_months",
]
