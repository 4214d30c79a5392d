"""Structural risk scoring for unsent transactions."""
from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List

from solders.instruction import Instruction

from .config import BASE_INSTRUCTION_COST, CPI_ACCOUNT_THRESHOLD, INDICATOR_COST, LARGE_PAYLOAD_BYTES
from .models import CandidateTransaction, RiskAssessment, RiskIndicator, RiskLevel

SIMULATED_EFFECTS = {
    RiskIndicator.ADMIN_OPERATION: "Would attempt admin operation",
    RiskIndicator.LARGE_TRANSFER: "Would transfer large amount",
    RiskIndicator.CROSS_PROGRAM_INVOCATION: "Would invoke external program",
}


def is_admin_operation(ix: Instruction) -> bool:
    """Some account is both writable and a signer."""
    return any(meta.is_writable and meta.is_signer for meta in ix.accounts)


def is_large_transfer(ix: Instruction) -> bool:
    return len(bytes(ix.data)) > LARGE_PAYLOAD_BYTES


def is_program_invocation(ix: Instruction) -> bool:
    return len(ix.accounts) > CPI_ACCOUNT_THRESHOLD


_CHECKS = (
    (RiskIndicator.ADMIN_OPERATION, is_admin_operation),
    (RiskIndicator.LARGE_TRANSFER, is_large_transfer),
    (RiskIndicator.CROSS_PROGRAM_INVOCATION, is_program_invocation),
)


def instruction_indicators(ix: Instruction) -> List[RiskIndicator]:
    """Indicators one instruction triggers, in check order."""
    return [indicator for indicator, check in _CHECKS if check(ix)]


def assess(transaction: CandidateTransaction) -> RiskAssessment:
    """Score a transaction from its shape alone; payloads are never decoded.

    Each indicator kind counts once no matter how many instructions trigger it,
    so the risk level only depends on how many distinct kinds were seen.
    """
    indicators: List[RiskIndicator] = []
    for ix in transaction.instructions:
        for indicator in instruction_indicators(ix):
            if indicator not in indicators:
                indicators.append(indicator)

    return RiskAssessment(
        indicators=tuple(indicators),
        risk_level=RiskLevel.from_indicator_count(len(indicators)),
        estimated_cost=len(transaction.instructions) * BASE_INSTRUCTION_COST
        + len(indicators) * INDICATOR_COST,
        simulated_effects=tuple(SIMULATED_EFFECTS[indicator] for indicator in indicators),
    )


def count_indicators(instructions: Iterable[Instruction]) -> Dict[RiskIndicator, int]:
    """Number of instructions triggering each indicator kind."""
    counts: Counter = Counter()
    for ix in instructions:
        counts.update(instruction_indicators(ix))
    return {indicator: counts.get(indicator, 0) for indicator, _ in _CHECKS}
