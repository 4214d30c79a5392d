"""Static classification tables.

Every heuristic decision in solaudit is driven by one of the tables below so
that the classifiers can be audited and tested in isolation:

* ``SUSPICIOUS_PATTERNS`` - keyword regexes applied to log and error text.
* ``SCENARIO_REQUIREMENTS`` - attack scenario -> risk indicators needed to
  predict success in a dry run.
* ``SECURITY_ERROR_MARKERS`` - error substrings meaning the program rejected
  the attack on purpose.
* ``ATTACK_PATTERN_BUCKETS`` - error substrings -> attack pattern counter.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Tuple

from .models import RiskIndicator

SUSPICIOUS_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(source, re.IGNORECASE)
    for source in (
        r"overflow|underflow",
        r"reentr(y|ant|ancy)",
        r"unauthorized|forbidden",
        r"double.*spend",
        r"exhaust|dos|denial",
        r"malicious|exploit",
        r"bypass|escalat",
        r"manipulat",
        r"invalid.*nonce",
        r"replay.*attack",
    )
)

TRANSFER_AMOUNT_PATTERN = re.compile(r"transfer.*?(\d+)", re.IGNORECASE)

FAILED_ATTACK_MARKERS = ("overflow", "underflow", "unauthorized")

SCENARIO_REQUIREMENTS: Dict[str, FrozenSet[RiskIndicator]] = {
    "unauthorized_admin": frozenset({RiskIndicator.ADMIN_OPERATION}),
    "overflow": frozenset({RiskIndicator.LARGE_TRANSFER}),
    "reentrancy": frozenset({RiskIndicator.CROSS_PROGRAM_INVOCATION}),
    "double_spending": frozenset(
        {RiskIndicator.LARGE_TRANSFER, RiskIndicator.CROSS_PROGRAM_INVOCATION}
    ),
}

SECURITY_ERROR_MARKERS = (
    "unauthorized",
    "access denied",
    "invalid authority",
    "program failed",
    "custom program error",
)

# Order matters: the first bucket whose markers match wins.
ATTACK_PATTERN_BUCKETS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("overflow", ("overflow",)),
    ("reentrancy", ("reentr",)),
    ("access_control", ("unauthorized", "access")),
    ("input_validation", ("invalid", "validation")),
)


def describe_error(err: Any) -> str:
    """Render an RPC error descriptor as text."""
    if err is None:
        return ""
    if isinstance(err, str):
        return err
    try:
        return json.dumps(err, default=str)
    except (TypeError, ValueError):
        return str(err)


def match_suspicious_pattern(text: str) -> Optional[Pattern[str]]:
    """First suspicious pattern found in ``text``, case-insensitively."""
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(text):
            return pattern
    return None


def matching_pattern_sources(text: str) -> List[str]:
    return [pattern.pattern for pattern in SUSPICIOUS_PATTERNS if pattern.search(text)]


def extract_transfer_amount(text: str) -> Optional[int]:
    """Lamport amount from a ``Transfer`` log line."""
    match = TRANSFER_AMOUNT_PATTERN.search(text)
    return int(match.group(1)) if match else None


def required_indicators(scenario: str) -> FrozenSet[RiskIndicator]:
    return SCENARIO_REQUIREMENTS.get(scenario.lower(), frozenset())


def is_expected_security_error(err: Any) -> bool:
    """True when the error text shows the program rejected the call on purpose."""
    text = describe_error(err).lower()
    return any(marker in text for marker in SECURITY_ERROR_MARKERS)


def classify_error_bucket(err: Any) -> Optional[str]:
    """Attack pattern counter name for an error, or None."""
    text = describe_error(err).lower()
    for bucket, markers in ATTACK_PATTERN_BUCKETS:
        if any(marker in text for marker in markers):
            return bucket
    return None
