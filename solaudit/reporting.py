"""Tabular export of monitor alerts, stats, historical summaries and attack results."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Tuple

import pandas as pd

from .models import Alert, AttackSimulationResult, HistoricalSummary, MonitoringStats

ALERT_COLUMNS = ["timestamp", "type", "severity", "program", "signature", "details"]
ATTACK_COLUMNS = ["program", "scenario", "status", "would_succeed", "risk_level", "gas_estimate", "reason"]


def alerts_frame(alerts: Iterable[Alert]) -> pd.DataFrame:
    """One row per alert, enums flattened to their values."""
    rows = [
        {
            "timestamp": alert.timestamp,
            "type": alert.type.value,
            "severity": alert.severity.value,
            "program": alert.program,
            "signature": alert.signature,
            "details": alert.details,
        }
        for alert in alerts
    ]
    return pd.DataFrame(rows, columns=ALERT_COLUMNS)


def stats_frame(stats: MonitoringStats) -> pd.DataFrame:
    """One row per counter: totals, then per-program activity and attack patterns."""
    rows = [
        {"metric": "total_transactions", "key": "", "count": stats.total_transactions},
        {"metric": "suspicious_transactions", "key": "", "count": stats.suspicious_transactions},
        {"metric": "alerts_generated", "key": "", "count": stats.alerts_generated},
    ]
    rows += [
        {"metric": "program_activity", "key": program, "count": count}
        for program, count in stats.program_activity.items()
    ]
    rows += [
        {"metric": "attack_patterns", "key": pattern, "count": count}
        for pattern, count in stats.attack_patterns.items()
    ]
    return pd.DataFrame(rows, columns=["metric", "key", "count"])


def historical_frame(summaries: Dict[str, HistoricalSummary]) -> pd.DataFrame:
    rows = [
        {
            "program": program,
            "suspicious_count": summary.suspicious_count,
            "patterns": ";".join(summary.patterns),
        }
        for program, summary in summaries.items()
    ]
    return pd.DataFrame(rows, columns=["program", "suspicious_count", "patterns"])


def write_frame(df: pd.DataFrame, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)
    logging.info("Wrote %d rows to %s", len(df), output_path)


def attack_frame(results: Iterable[Tuple[str, str, AttackSimulationResult]]) -> pd.DataFrame:
    """One row per (program, scenario) attack result."""
    rows = [
        {
            "program": program,
            "scenario": scenario,
            "status": result.status.value,
            "would_succeed": result.would_succeed,
            "risk_level": result.risk_level.value if result.risk_level else "",
            "gas_estimate": result.gas_estimate,
            "reason": result.reason,
        }
        for program, scenario, result in results
    ]
    return pd.DataFrame(rows, columns=ATTACK_COLUMNS)


def write_report(text: str, output_path: Path) -> None:
    """Write a text report, creating parent directories."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text)
    logging.info("Wrote report to %s", output_path)
