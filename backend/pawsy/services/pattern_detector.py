from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from pawsy.models import Fact, Pattern, as_utc, utc_now

DEFAULT_THRESHOLD = 3
DEFAULT_WINDOW_DAYS = 30

SEVERITY_ORDER = {"critical": 4, "high": 3, "moderate": 2, "low": 1, "mild": 1}


def severity_rank(severity: Optional[str]) -> int:
    return SEVERITY_ORDER.get(severity or "", 0)


def max_severity(severities: Iterable[str]) -> str:
    best = "low"
    for severity in severities:
        if severity_rank(severity) > severity_rank(best):
            best = severity
    return best


def detect_patterns(
    facts: Iterable[Fact],
    threshold: int = DEFAULT_THRESHOLD,
    window_days: int = DEFAULT_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> List[Pattern]:
    """Group recent facts by tag and report tags seen at least ``threshold`` times."""
    current = as_utc(now or utc_now())
    window_start = current - timedelta(days=window_days)
    recent = [fact for fact in facts or [] if window_start <= fact.occurred_at <= current]
    if not recent:
        return []

    groups: Dict[str, Dict[str, Fact]] = {}
    for fact in recent:
        for tag in fact.tags:
            normalized = tag.strip().lower()
            if not normalized:
                continue
            groups.setdefault(normalized, {})[fact.id] = fact

    patterns: List[Pattern] = []
    for tag, members in groups.items():
        if len(members) < threshold:
            continue
        group = list(members.values())
        dates = sorted(fact.occurred_at for fact in group)
        patterns.append(
            Pattern(
                tag=tag,
                count=len(group),
                severity=max_severity(fact.severity for fact in group),
                first_seen=dates[0],
                last_seen=dates[-1],
                fact_ids=list(members.keys()),
                description=f'"{tag}" has been recorded {len(group)} times in the last {window_days} days.',
            )
        )

    patterns.sort(key=lambda pattern: (-severity_rank(pattern.severity), -pattern.count))
    return patterns
