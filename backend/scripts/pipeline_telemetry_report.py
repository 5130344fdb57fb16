#!/usr/bin/env python3
import argparse
import json
import re
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

TELEMETRY_PATTERN = re.compile(r"pipeline_telemetry=(\{.*\})")


def _iter_lines(paths: List[str]) -> Iterable[str]:
    if not paths:
        for line in sys.stdin:
            yield line.rstrip("\n")
        return
    for path in paths:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                yield line.rstrip("\n")


def parse_payload(line: str) -> Optional[Dict[str, Any]]:
    match = TELEMETRY_PATTERN.search(line)
    if not match:
        return None
    try:
        value = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    if not isinstance(value, dict):
        return None
    return value


def _safe_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def build_report(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    kind_counts: Counter[str] = Counter()
    alerts_by_dog: Counter[str] = Counter()

    new_facts = 0
    updated_facts = 0
    new_alerts = 0
    runs_with_alerts = 0
    runs_with_patterns = 0
    pin_suggestions = 0

    for row in rows:
        kind_counts[str(row.get("kind", "unknown"))] += 1
        new_facts += _safe_int(row.get("new_facts", 0))
        updated_facts += _safe_int(row.get("updated_facts", 0))

        alerts = _safe_int(row.get("new_alerts", 0))
        new_alerts += alerts
        if alerts:
            runs_with_alerts += 1
            alerts_by_dog[str(row.get("dog_id", "unknown"))] += alerts
        if _safe_int(row.get("pattern_count", 0)):
            runs_with_patterns += 1
        if bool(row.get("pin_suggested", False)):
            pin_suggestions += 1

    total = len(rows)
    return {
        "total_runs": total,
        "kind_counts": dict(kind_counts),
        "facts": {
            "new": new_facts,
            "updated": updated_facts,
            "avg_new_per_run": round(new_facts / total, 4) if total else 0.0,
        },
        "alerts": {
            "new": new_alerts,
            "runs_with_alerts": runs_with_alerts,
            "alert_rate": round(runs_with_alerts / total, 4) if total else 0.0,
            "top_dogs": dict(alerts_by_dog.most_common(10)),
        },
        "pattern_rate": round(runs_with_patterns / total, 4) if total else 0.0,
        "pin_suggestion_rate": round(pin_suggestions / total, 4) if total else 0.0,
    }


def print_human(report: Dict[str, Any]) -> None:
    print(f"Total runs: {report['total_runs']}")
    print("Runs by kind:")
    for kind, count in sorted(report["kind_counts"].items(), key=lambda x: x[1], reverse=True):
        print(f"  - {kind}: {count}")
    facts = report["facts"]
    print(f"Facts: new={facts['new']} updated={facts['updated']} avg_new_per_run={facts['avg_new_per_run']:.2f}")
    alerts = report["alerts"]
    print(
        f"Alerts: new={alerts['new']} runs_with_alerts={alerts['runs_with_alerts']} "
        f"alert_rate={alerts['alert_rate']:.2%}"
    )
    print(f"Pattern rate: {report['pattern_rate']:.2%}")
    print(f"Pin suggestion rate: {report['pin_suggestion_rate']:.2%}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Summarize Pawsy pipeline_telemetry logs.")
    parser.add_argument("log_files", nargs="*", help="Log files to parse. If omitted, read stdin.")
    parser.add_argument("--json-out", default="", help="Optional path to write JSON summary.")
    args = parser.parse_args()

    rows: List[Dict[str, Any]] = []
    for line in _iter_lines(args.log_files):
        payload = parse_payload(line)
        if payload:
            rows.append(payload)

    report = build_report(rows)
    print_human(report)

    if args.json_out:
        path = Path(args.json_out)
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote report: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
