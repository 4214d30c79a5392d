"""Tests for the structural transaction risk analyzer."""
import itertools

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from solaudit.models import CandidateTransaction, RiskIndicator, RiskLevel
from solaudit.risk_analyzer import assess, count_indicators


def make_instruction(accounts=2, payload=8, admin=False):
    """Instruction with ``accounts`` metas; the first is writable+signer when ``admin``."""
    metas = [
        AccountMeta(Pubkey.new_unique(), is_signer=admin and i == 0, is_writable=admin and i == 0)
        for i in range(accounts)
    ]
    return Instruction(Pubkey.new_unique(), bytes(payload), metas)


def test_empty_transaction_is_low_and_free():
    """Empty transaction scores low at zero cost"""
    result = assess(CandidateTransaction(instructions=()))

    assert result.indicators == ()
    assert result.risk_level is RiskLevel.LOW
    assert result.estimated_cost == 0


def test_plain_instruction_has_no_indicators():
    result = assess(CandidateTransaction.from_instructions([make_instruction()]))

    assert result.indicators == ()
    assert result.risk_level is RiskLevel.LOW
    assert result.estimated_cost == 5000


def test_payload_threshold_is_strictly_greater_than_32():
    """Exactly 32 bytes is not a large transfer"""
    at_limit = assess(CandidateTransaction.from_instructions([make_instruction(payload=32)]))
    over_limit = assess(CandidateTransaction.from_instructions([make_instruction(payload=33)]))

    assert RiskIndicator.LARGE_TRANSFER not in at_limit.indicators
    assert over_limit.indicators == (RiskIndicator.LARGE_TRANSFER,)


def test_account_threshold_is_strictly_greater_than_3():
    """Exactly 3 accounts is not a cross-program call"""
    three = assess(CandidateTransaction.from_instructions([make_instruction(accounts=3)]))
    four = assess(CandidateTransaction.from_instructions([make_instruction(accounts=4)]))

    assert three.indicators == ()
    assert four.indicators == (RiskIndicator.CROSS_PROGRAM_INVOCATION,)


def test_signer_without_writable_is_not_admin():
    meta = AccountMeta(Pubkey.new_unique(), is_signer=True, is_writable=False)
    ix = Instruction(Pubkey.new_unique(), bytes(8), [meta])

    assert assess(CandidateTransaction.from_instructions([ix])).indicators == ()


def test_indicator_kinds_are_deduplicated():
    """Repeated indicator kinds count once"""
    instructions = [make_instruction(payload=64) for _ in range(4)]
    result = assess(CandidateTransaction.from_instructions(instructions))

    assert result.indicators == (RiskIndicator.LARGE_TRANSFER,)
    assert result.risk_level is RiskLevel.MEDIUM
    assert result.estimated_cost == 4 * 5000 + 2000


def test_admin_and_large_payload_on_one_instruction():
    ix = make_instruction(accounts=2, payload=40, admin=True)
    result = assess(CandidateTransaction.from_instructions([ix]))

    assert set(result.indicators) == {RiskIndicator.ADMIN_OPERATION, RiskIndicator.LARGE_TRANSFER}
    assert result.risk_level is RiskLevel.HIGH
    assert result.estimated_cost == 1 * 5000 + 2 * 2000


def test_admin_and_large_payload_with_companion_instruction():
    instructions = [make_instruction(accounts=2, payload=40, admin=True), make_instruction()]
    result = assess(CandidateTransaction.from_instructions(instructions))

    assert result.risk_level is RiskLevel.HIGH
    assert result.estimated_cost == 14000


def test_all_three_indicators_is_critical():
    ix = make_instruction(accounts=5, payload=64, admin=True)
    result = assess(CandidateTransaction.from_instructions([ix]))

    assert len(result.indicators) == 3
    assert result.risk_level is RiskLevel.CRITICAL
    assert len(result.simulated_effects) == 3


def test_level_ignores_instruction_order():
    """Instruction order never changes the level"""
    instructions = [
        make_instruction(admin=True),
        make_instruction(payload=40),
        make_instruction(accounts=6),
        make_instruction(),
    ]
    levels = {
        assess(CandidateTransaction.from_instructions(order)).risk_level
        for order in itertools.permutations(instructions)
    }

    assert levels == {RiskLevel.CRITICAL}


def test_level_rank_is_monotonic_in_indicator_count():
    ranks = [RiskLevel.from_indicator_count(n).rank for n in range(6)]

    assert ranks == [0, 1, 2, 3, 3, 3]


def test_count_indicators_tallies_per_instruction():
    """Report counts are per instruction"""
    counts = count_indicators([make_instruction(payload=40), make_instruction(payload=40), make_instruction(admin=True)])

    assert counts == {
        RiskIndicator.ADMIN_OPERATION: 1,
        RiskIndicator.LARGE_TRANSFER: 2,
        RiskIndicator.CROSS_PROGRAM_INVOCATION: 0,
    }


def test_signers_are_derived_from_account_metas():
    ix = make_instruction(admin=True)
    tx = CandidateTransaction.from_instructions([ix, ix])

    assert tx.signers == (ix.accounts[0].pubkey,)
    assert tx.payer == ix.accounts[0].pubkey
