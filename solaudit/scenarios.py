"""Instruction builders for the stock attack scenarios.

Each builder aims one Anchor-style instruction sequence at a program. The
payloads are shaped to exercise the structural risk indicators; the programs
are expected to reject them.
"""
from __future__ import annotations

import hashlib
import struct
from typing import Callable, Dict, List, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1


def anchor_discriminator(method: str) -> bytes:
    """First 8 bytes of sha256("global:<method>")."""
    return hashlib.sha256(f"global:{method}".encode()).digest()[:8]


def config_address(program_id: Pubkey) -> Pubkey:
    """The program's ``config`` PDA."""
    address, _ = Pubkey.find_program_address([b"config"], program_id)
    return address


def unauthorized_admin(program_id: Pubkey, attacker: Pubkey, dummies: Sequence[Pubkey]) -> List[Instruction]:
    """Try to replace the admin in the config account."""
    # attacker signs as the new admin
    data = anchor_discriminator("update_admin")
    accounts = [
        AccountMeta(attacker, is_signer=True, is_writable=True),
        AccountMeta(config_address(program_id), is_signer=False, is_writable=True),
    ]
    return [Instruction(program_id, data, accounts)]


def overflow(program_id: Pubkey, attacker: Pubkey, dummies: Sequence[Pubkey]) -> List[Instruction]:
    """Swap with maximal u64 and u128 amounts."""
    data = (
        anchor_discriminator("swap_tokens")
        + struct.pack("<QQ", U64_MAX, 0)
        + U128_MAX.to_bytes(16, "little")
    )
    accounts = [
        AccountMeta(attacker, is_signer=True, is_writable=False),
        AccountMeta(config_address(program_id), is_signer=False, is_writable=True),
    ]
    return [Instruction(program_id, data, accounts)]


def reentrancy(program_id: Pubkey, attacker: Pubkey, dummies: Sequence[Pubkey]) -> List[Instruction]:
    # the program itself is passed as the callback target
    data = anchor_discriminator("claim_rewards")
    accounts = [
        AccountMeta(attacker, is_signer=True, is_writable=False),
        AccountMeta(config_address(program_id), is_signer=False, is_writable=True),
        AccountMeta(dummies[0], is_signer=False, is_writable=True),
        AccountMeta(dummies[1], is_signer=False, is_writable=True),
        AccountMeta(program_id, is_signer=False, is_writable=False),
    ]
    return [Instruction(program_id, data, accounts)]


def double_spending(program_id: Pubkey, attacker: Pubkey, dummies: Sequence[Pubkey]) -> List[Instruction]:
    # same withdrawal twice in one transaction, replaying the nonce
    nonce = bytes(dummies[2])
    data = anchor_discriminator("withdraw") + struct.pack("<Q", 1_000_000) + nonce
    accounts = [
        AccountMeta(attacker, is_signer=True, is_writable=False),
        AccountMeta(config_address(program_id), is_signer=False, is_writable=True),
        AccountMeta(dummies[0], is_signer=False, is_writable=True),
        AccountMeta(dummies[1], is_signer=False, is_writable=True),
    ]
    withdrawal = Instruction(program_id, data, accounts)
    return [withdrawal, withdrawal]


SCENARIOS: Dict[str, Callable[[Pubkey, Pubkey, Sequence[Pubkey]], List[Instruction]]] = {
    "unauthorized_admin": unauthorized_admin,
    "overflow": overflow,
    "reentrancy": reentrancy,
    "double_spending": double_spending,
}

DUMMY_ACCOUNTS_NEEDED = 3


def build_scenario(
    name: str, program_id: Pubkey, attacker: Pubkey, dummies: Sequence[Pubkey]
) -> List[Instruction]:
    """Instructions for the named scenario; unknown names raise KeyError."""
    if name not in SCENARIOS:
        raise KeyError(f"Unknown attack scenario: {name}")
    return SCENARIOS[name](program_id, attacker, dummies)
