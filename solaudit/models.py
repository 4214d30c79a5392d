"""Data types shared by the analyzer, the safe-mode tester and the live monitor."""
from __future__ import annotations

import copy
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from solders.instruction import Instruction
from solders.pubkey import Pubkey


class RiskIndicator(str, Enum):
    ADMIN_OPERATION = "admin_operation"
    LARGE_TRANSFER = "large_transfer"
    CROSS_PROGRAM_INVOCATION = "cross_program_invocation"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def from_indicator_count(cls, count: int) -> "RiskLevel":
        return _LEVEL_ORDER[min(max(count, 0), len(_LEVEL_ORDER) - 1)]


_LEVEL_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

# Alert severities share the same ordinal scale
Severity = RiskLevel


class AlertType(str, Enum):
    SUSPICIOUS = "suspicious"
    ATTACK = "attack"
    ANOMALY = "anomaly"
    HIGH_VALUE = "high-value"


class SimulationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SIMULATED = "simulated"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class CandidateTransaction:
    """Ordered instructions plus the signer set they require."""

    instructions: Tuple[Instruction, ...]
    signers: Tuple[Pubkey, ...] = ()
    fee_payer: Optional[Pubkey] = None

    @classmethod
    def from_instructions(
        cls, instructions: Iterable[Instruction], fee_payer: Optional[Pubkey] = None
    ) -> "CandidateTransaction":
        """Collect signers in first-seen order from the instructions' account metas."""
        instructions = tuple(instructions)
        signers: List[Pubkey] = []
        for ix in instructions:
            for meta in ix.accounts:
                if meta.is_signer and meta.pubkey not in signers:
                    signers.append(meta.pubkey)
        return cls(instructions=instructions, signers=tuple(signers), fee_payer=fee_payer)

    @property
    def payer(self) -> Pubkey:
        """Explicit fee payer, else the first signer."""
        if self.fee_payer is not None:
            return self.fee_payer
        return self.signers[0] if self.signers else Pubkey.default()


@dataclass(frozen=True)
class SimulationOutcome:
    success: bool
    error: Optional[Any] = None
    units_consumed: Optional[int] = None
    logs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskAssessment:
    indicators: Tuple[RiskIndicator, ...]
    risk_level: RiskLevel
    estimated_cost: int
    simulated_effects: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AttackSimulationResult:
    status: SimulationStatus
    would_succeed: bool
    reason: Optional[str] = None
    gas_estimate: Optional[int] = None
    expected_error: Optional[str] = None
    captured_instructions: Optional[Tuple[Instruction, ...]] = None
    simulated_effects: Optional[Tuple[str, ...]] = None
    risk_level: Optional[RiskLevel] = None


@dataclass(frozen=True)
class Alert:
    type: AlertType
    severity: Severity
    program: str
    details: str
    signature: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class MonitoringStats:
    total_transactions: int = 0
    suspicious_transactions: int = 0
    alerts_generated: int = 0
    program_activity: Counter = field(default_factory=Counter)
    attack_patterns: Counter = field(default_factory=Counter)

    def snapshot(self) -> "MonitoringStats":
        """Copy with independent counters."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class LogEvent:
    """A confirmed transaction's log lines for a subscribed program."""

    program: str
    signature: str
    logs: Sequence[str]
    err: Optional[Any] = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class AccountChangeEvent:
    program: str
    account: str
    slot: int
    lamports: Optional[int] = None
    data_size: Optional[int] = None


@dataclass(frozen=True)
class SignatureRecord:
    signature: str
    slot: int
    err: Optional[Any] = None
    block_time: Optional[int] = None


@dataclass(frozen=True)
class HistoricalSummary:
    suspicious_count: int
    patterns: List[str]


@dataclass(frozen=True)
class MonitorEvent:
    kind: str
    payload: Any
