from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

# Detail lines shown per rule before eliding the rest
DETAIL_LIMIT = 5


def write_validation_report(report: Dict[str, object], outputs_dir: Path, name: str = "validation.json") -> Path:
    outputs_dir.mkdir(parents=True, exist_ok=True)
    path = outputs_dir / name
    path.write_text(json.dumps(report, indent=2, sort_keys=True), encoding="utf-8")
    return path


def _rule_lines(violations: Dict[str, List[str]]) -> List[str]:
    if not violations:
        return ["rules: all hold"]
    out = [f"rules: {sum(len(v) for v in violations.values())} violations"]
    for rule in sorted(violations):
        found = violations[rule]
        out.append(f"  {rule} ({len(found)})")
        out.extend(f"    {item}" for item in found[:DETAIL_LIMIT])
        if len(found) > DETAIL_LIMIT:
            out.append(f"    ... {len(found) - DETAIL_LIMIT} more")
    return out


def _ledger_lines(balances: Dict[str, float], negative: Dict[str, float]) -> List[str]:
    out = [f"ledger: {len(balances)} students, {len(negative)} below zero"]
    for student, hours in balances.items():
        flag = "  OVERDRAWN" if student in negative else ""
        out.append(f"  {student}: {hours:g}h{flag}")
    return out


def format_validation_report(report: Dict[str, object]) -> str:
    """Plain-text summary of ``validate_snapshot`` output for the console."""
    counts = report.get("booking_status_counts") or {}
    booked = " ".join(f"{status}={n}" for status, n in counts.items() if n)
    lines = [f"clash_count: {report.get('clash_count', 0)}", f"bookings: {booked or 'none'}"]
    lines.extend(_rule_lines(report.get("violations_by_rule") or {}))
    lines.extend(_ledger_lines(report.get("balances") or {}, report.get("negative_balances") or {}))
    return "\n".join(lines)
