"""Tests for the safe-mode attack tester, without network calls."""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from solaudit.models import CandidateTransaction, RiskLevel, SimulationOutcome, SimulationStatus
from solaudit.safe_mode import SafeModeAttackTester, SafeModeConfig, create_safe_tester


def make_instruction(accounts=2, payload=8, admin=False):
    metas = [
        AccountMeta(Pubkey.new_unique(), is_signer=admin and i == 0, is_writable=admin and i == 0)
        for i in range(accounts)
    ]
    return Instruction(Pubkey.new_unique(), bytes(payload), metas)


def mock_endpoint(outcome=None):
    endpoint = Mock()
    endpoint.simulate = AsyncMock(return_value=outcome)
    return endpoint


def run(coro):
    return asyncio.run(coro)


def test_dry_run_never_touches_endpoint_and_captures():
    """Dry run captures instructions without calling the endpoint"""
    endpoint = mock_endpoint()
    tester = SafeModeAttackTester(endpoint, SafeModeConfig(dry_run=True))
    instructions = [make_instruction(), make_instruction(payload=40), make_instruction()]

    result = run(tester.simulate_attack("overflow", lambda: instructions))

    endpoint.simulate.assert_not_awaited()
    assert len(tester.captured_instructions) == 3
    assert result.status is SimulationStatus.SIMULATED
    assert result.gas_estimate == 3 * 5000 + 2000
    assert result.expected_error is None


def test_capture_log_appends_across_calls_and_clears():
    """Captured instructions accumulate until cleared"""
    tester = create_safe_tester()
    ix = make_instruction()

    run(tester.simulate_attack("a", lambda: [ix, ix]))
    run(tester.simulate_attack("b", lambda: [ix]))
    assert tester.captured_instructions == [ix, ix, ix]

    tester.clear_captured_instructions()
    assert tester.captured_instructions == []


def test_capture_disabled_leaves_log_empty():
    tester = create_safe_tester(capture_instructions=False)

    result = run(tester.simulate_attack("overflow", lambda: [make_instruction()]))

    assert tester.captured_instructions == []
    assert result.captured_instructions is None


def test_overflow_prediction_tracks_payload_size():
    """Overflow needs a payload over 32 bytes"""
    tester = create_safe_tester()

    small = run(tester.simulate_attack("overflow", lambda: [make_instruction(payload=32)]))
    large = run(tester.simulate_attack("OVERFLOW", lambda: [make_instruction(), make_instruction(payload=33)]))

    assert small.would_succeed is False
    assert small.reason == "Attack would likely be blocked"
    assert large.would_succeed is True
    assert large.reason == "Attack would likely succeed"


def test_double_spending_needs_both_indicators():
    """Double spending needs a large payload and many accounts"""
    tester = create_safe_tester()

    partial = run(tester.simulate_attack("double_spending", lambda: [make_instruction(payload=64)]))
    full = run(tester.simulate_attack("double_spending", lambda: [make_instruction(accounts=4, payload=64)]))

    assert partial.would_succeed is False
    assert full.would_succeed is True
    assert full.risk_level is RiskLevel.HIGH


def test_unknown_scenario_is_predicted_to_succeed():
    tester = create_safe_tester()

    result = run(tester.simulate_attack("oracle_drift", lambda: [make_instruction()]))

    assert result.would_succeed is True
    assert result.risk_level is RiskLevel.LOW


def test_dry_run_takes_precedence_over_log_only():
    """Dry run wins when log only is also set"""
    tester = create_safe_tester(dry_run=True, log_only=True)

    result = run(tester.simulate_attack("unauthorized_admin", lambda: [make_instruction(admin=True)]))

    assert result.would_succeed is True
    assert result.simulated_effects == ("Would attempt admin operation",)


def test_log_only_dumps_instructions(caplog):
    """Log only mode dumps each instruction"""
    caplog.set_level("INFO")
    endpoint = mock_endpoint()
    tester = SafeModeAttackTester(endpoint, SafeModeConfig(dry_run=False, log_only=True))

    result = run(tester.simulate_attack("flash_loan", lambda: [make_instruction(accounts=3, payload=12)]))

    endpoint.simulate.assert_not_awaited()
    assert result.status is SimulationStatus.SIMULATED
    assert result.would_succeed is False
    assert "Keys: 3" in caplog.text
    assert "Data length: 12" in caplog.text


def test_simulation_blocked_by_program_error():
    """Program errors mean the attack was blocked"""
    outcome = SimulationOutcome(
        success=False,
        error="Error processing Instruction 0: custom program error: 0x1770",
        units_consumed=2100,
    )
    tester = SafeModeAttackTester(mock_endpoint(outcome), SafeModeConfig(dry_run=False))

    result = run(tester.simulate_attack("unauthorized_admin", lambda: [make_instruction()]))

    assert result.status is SimulationStatus.BLOCKED
    assert result.would_succeed is False
    assert result.risk_level is RiskLevel.LOW
    assert result.gas_estimate == 2100
    assert "custom program error" in result.expected_error


def test_security_error_match_is_case_insensitive():
    outcome = SimulationOutcome(success=False, error={"message": "ACCESS DENIED for signer"})
    tester = SafeModeAttackTester(mock_endpoint(outcome), SafeModeConfig(dry_run=False))

    result = run(tester.simulate_attack("x", lambda: [make_instruction()]))

    assert result.status is SimulationStatus.BLOCKED


def test_simulation_unexpected_error_is_failed():
    outcome = SimulationOutcome(success=False, error="BlockhashNotFound")
    tester = SafeModeAttackTester(mock_endpoint(outcome), SafeModeConfig(dry_run=False))

    result = run(tester.simulate_attack("x", lambda: [make_instruction()]))

    assert result.status is SimulationStatus.FAILED
    assert result.reason == "BlockhashNotFound"
    assert result.risk_level is RiskLevel.LOW


def test_successful_simulation_is_critical():
    """A clean simulation is a critical finding"""
    outcome = SimulationOutcome(success=True, units_consumed=4321, logs=("Program log: ok",))
    endpoint = mock_endpoint(outcome)
    tester = SafeModeAttackTester(endpoint, SafeModeConfig(dry_run=False))
    tx = CandidateTransaction.from_instructions([make_instruction()])

    result = run(tester.simulate_attack("x", lambda: tx))

    endpoint.simulate.assert_awaited_once_with(tx)
    assert result.status is SimulationStatus.SUCCESS
    assert result.would_succeed is True
    assert result.risk_level is RiskLevel.CRITICAL
    assert result.gas_estimate == 4321


def test_overrides_win_over_computed_fields():
    tester = create_safe_tester()

    result = run(
        tester.simulate_attack(
            "overflow",
            lambda: [make_instruction(payload=64)],
            {"would_succeed": False, "risk_level": RiskLevel.CRITICAL, "reason": "patched"},
        )
    )

    assert result.would_succeed is False
    assert result.risk_level is RiskLevel.CRITICAL
    assert result.reason == "patched"
    assert result.status is SimulationStatus.SIMULATED


def test_builder_failure_is_reported_not_raised():
    """Builder exceptions become a failed result"""
    def builder():
        raise ValueError("bad seeds")

    tester = create_safe_tester()
    result = run(tester.simulate_attack("x", builder))

    assert result.status is SimulationStatus.FAILED
    assert result.would_succeed is False
    assert result.reason == "bad seeds"
    assert result.expected_error == "ValueError('bad seeds')"
    assert tester.captured_instructions == []


def test_endpoint_failure_is_reported_not_raised():
    endpoint = Mock()
    endpoint.simulate = AsyncMock(side_effect=ConnectionError("rpc down"))
    tester = SafeModeAttackTester(endpoint, SafeModeConfig(dry_run=False))

    result = run(tester.simulate_attack("x", lambda: [make_instruction()]))

    assert result.status is SimulationStatus.FAILED
    assert result.reason == "rpc down"


def test_async_builder_is_awaited():
    async def builder():
        return [make_instruction(admin=True)]

    tester = create_safe_tester()
    result = run(tester.simulate_attack("unauthorized_admin", builder))

    assert result.would_succeed is True


def test_generate_report_counts_captured_indicators():
    """Report counts each indicator over captured instructions"""
    tester = create_safe_tester()
    run(tester.simulate_attack("a", lambda: [make_instruction(admin=True), make_instruction(payload=40)]))

    report = tester.generate_report()

    assert "Total: 2" in report
    assert "- Admin operation bypasses: 1" in report
    assert "- Large transfers: 1" in report
    assert "- Cross-program calls: 0" in report
    assert "- Dry Run: True" in report


def test_create_safe_tester_defaults():
    config = create_safe_tester().config

    assert config == SafeModeConfig(
        dry_run=True, log_only=False, simulate_responses=True, verbose_logging=True, capture_instructions=True
    )


def test_unknown_override_key_is_rejected_before_running():
    """Misspelled override fields raise ValueError and nothing is built or simulated"""
    endpoint = mock_endpoint()
    builder = Mock(return_value=[make_instruction()])
    tester = SafeModeAttackTester(endpoint, SafeModeConfig(dry_run=False))

    with pytest.raises(ValueError, match="wouldSucceed"):
        run(tester.simulate_attack("overflow", builder, overrides={"wouldSucceed": True}))

    builder.assert_not_called()
    endpoint.simulate.assert_not_awaited()
    assert tester.captured_instructions == []
