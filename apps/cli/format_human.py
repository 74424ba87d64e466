"""Human-readable rendering of collision reports and scan results."""

from __future__ import annotations

from collections import Counter

from apps.cli.scan import ScanResult
from bullets.patterns.models import CollisionReport


def render_collision_report(report: CollisionReport) -> str:
    """Render the collision detector output, duplicates first."""

    lines = ["collision_report:"]
    if not report.issues:
        lines.append(" - none detected")
        return "\n".join(lines)

    lines.append(f"duplicates={len(report.duplicates)} overlaps={len(report.overlaps)}")
    for issue in report.duplicates:
        lines.append(f" - WARNING: {issue.message}")
    for issue in report.overlaps:
        lines.append(f" - note: {issue.message}")
    return "\n".join(lines)


def render_scan_summary(result: ScanResult) -> str:
    lines: list[str] = []
    counter: Counter[str] = Counter()
    for row in result.rows:
        if row.classification is None and row.marker is None:
            continue
        label = row.classification or "-"
        counter[label] += 1
        lines.append(f"{row.uid}  {label}  marker={row.marker or 'none'}  text={row.text!r}")

    if counter:
        totals = ", ".join(f"{key}={counter[key]}" for key in sorted(counter))
        lines.append(f"classified: {totals}")
    else:
        lines.append("classified: none")
    if not result.settled:
        lines.append("WARNING: engine did not settle before timeout")
    return "\n".join(lines)
