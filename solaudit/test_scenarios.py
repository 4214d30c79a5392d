"""Tests for the stock attack scenario builders."""
import hashlib

import pytest
from solders.pubkey import Pubkey

from solaudit.models import CandidateTransaction
from solaudit.patterns import SCENARIO_REQUIREMENTS
from solaudit.risk_analyzer import assess
from solaudit.scenarios import (
    DUMMY_ACCOUNTS_NEEDED,
    SCENARIOS,
    anchor_discriminator,
    build_scenario,
    config_address,
)

PROGRAM = Pubkey.from_string("CvDs2FSKiNAmtdGmY3LaVcCpqAudK3otmrG3ksmUBzpG")


def make_dummies():
    return [Pubkey.new_unique() for _ in range(DUMMY_ACCOUNTS_NEEDED)]


def test_discriminator_is_anchor_global_prefix():
    expected = hashlib.sha256(b"global:withdraw").digest()[:8]

    assert anchor_discriminator("withdraw") == expected
    assert len(anchor_discriminator("update_admin")) == 8


def test_every_scenario_has_requirements():
    assert set(SCENARIOS) == set(SCENARIO_REQUIREMENTS)


@pytest.mark.parametrize("name", list(SCENARIOS))
def test_scenario_shows_exactly_the_indicators_it_needs(name):
    """Each stock scenario would be predicted to succeed in a dry run, with no extra indicators"""
    instructions = build_scenario(name, PROGRAM, Pubkey.new_unique(), make_dummies())

    assessment = assess(CandidateTransaction.from_instructions(instructions))

    assert set(assessment.indicators) == SCENARIO_REQUIREMENTS[name]
    assert all(ix.program_id == PROGRAM for ix in instructions)


def test_double_spending_repeats_the_withdrawal():
    dummies = make_dummies()

    first, second = build_scenario("double_spending", PROGRAM, Pubkey.new_unique(), dummies)

    assert first == second
    assert bytes(first.data).endswith(bytes(dummies[2]))


def test_admin_scenario_targets_config_pda():
    attacker = Pubkey.new_unique()

    (ix,) = build_scenario("unauthorized_admin", PROGRAM, attacker, make_dummies())

    assert ix.accounts[0].pubkey == attacker
    assert ix.accounts[1].pubkey == config_address(PROGRAM)


def test_unknown_scenario_raises():
    with pytest.raises(KeyError, match="flash_loan"):
        build_scenario("flash_loan", PROGRAM, Pubkey.new_unique(), make_dummies())
