"""Throwaway wallets and SPL token mints for attack scenarios on a test cluster."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.async_client import AsyncToken
from spl.token.constants import TOKEN_PROGRAM_ID

from .config import LAMPORTS_PER_SOL, TEST_TOKEN_DECIMALS, TEST_TOKEN_MINT_AMOUNT, program_ids


@dataclass
class TestWallet:
    __test__ = False

    name: str
    keypair: Keypair
    token_accounts: Dict[str, Pubkey] = field(default_factory=dict)

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()


@dataclass
class TestTokens:
    __test__ = False

    primary_mint: AsyncToken
    rewards_mint: AsyncToken

    def by_label(self) -> Dict[str, AsyncToken]:
        return {"primary": self.primary_mint, "rewards": self.rewards_mint}


@dataclass
class TestEnvironment:
    __test__ = False

    admin: TestWallet
    attacker: TestWallet
    victim: TestWallet
    tokens: TestTokens
    program_ids: Dict[str, Pubkey]


class SecurityTestEnvironment:
    """Builds funded wallets and test mints on localnet or devnet.

    ``payer`` pays for mint and token account creation. Without one the admin
    wallet pays, which is enough on a cluster that serves airdrops.
    """

    def __init__(
        self,
        client: AsyncClient,
        payer: Optional[Keypair] = None,
        program_id_map: Optional[Dict[str, str]] = None,
    ):
        self.client = client
        self.payer = payer
        self.program_id_map = program_id_map or program_ids()
        self.environment: Optional[TestEnvironment] = None

    async def setup(self) -> TestEnvironment:
        """Airdrop Admin, Attacker and Victim wallets, then mint both test tokens to each."""
        logging.info("Setting up security test environment...")
        admin = await self.create_test_wallet("Admin", 10)
        attacker = await self.create_test_wallet("Attacker", 5)
        victim = await self.create_test_wallet("Victim", 5)

        tokens = await self.create_test_tokens(admin.keypair)
        await self.fund_wallets_with_tokens([admin, attacker, victim], tokens)

        self.environment = TestEnvironment(
            admin=admin,
            attacker=attacker,
            victim=victim,
            tokens=tokens,
            program_ids={name: Pubkey.from_string(value) for name, value in self.program_id_map.items()},
        )
        logging.info("Test environment setup complete")
        return self.environment

    async def create_test_wallet(self, name: str, sol_amount: float) -> TestWallet:
        """Fresh keypair funded by airdrop; waits for confirmation."""
        keypair = Keypair()
        logging.info("Funding %s wallet with %s SOL...", name, sol_amount)
        response = await self.client.request_airdrop(keypair.pubkey(), int(sol_amount * LAMPORTS_PER_SOL))
        await self.client.confirm_transaction(response.value)
        return TestWallet(name=name, keypair=keypair)

    async def create_test_tokens(self, authority: Keypair) -> TestTokens:
        """Create the primary and rewards mints with ``authority`` as mint authority."""
        logging.info("Creating test tokens...")
        fee_payer = self.payer or authority
        primary = await AsyncToken.create_mint(
            self.client, fee_payer, authority.pubkey(), TEST_TOKEN_DECIMALS, TOKEN_PROGRAM_ID, authority.pubkey()
        )
        rewards = await AsyncToken.create_mint(
            self.client, fee_payer, authority.pubkey(), TEST_TOKEN_DECIMALS, TOKEN_PROGRAM_ID, authority.pubkey()
        )
        logging.info("Test tokens created: primary=%s rewards=%s", primary.pubkey, rewards.pubkey)
        return TestTokens(primary_mint=primary, rewards_mint=rewards)

    async def fund_wallets_with_tokens(self, wallets: Sequence[TestWallet], tokens: TestTokens) -> None:
        """Give every wallet an associated account and 1M whole tokens of each mint.

        Mints are created with the admin wallet as authority, so ``setup()``
        must pass the admin among ``wallets``; it signs every ``mint_to``.
        """
        logging.info("Distributing test tokens to wallets...")
        authority = wallets[0].keypair
        for wallet in wallets:
            for label, token in tokens.by_label().items():
                account = await token.create_associated_token_account(wallet.pubkey)
                wallet.token_accounts[label] = account
                await token.mint_to(account, authority, TEST_TOKEN_MINT_AMOUNT)

    async def create_malicious_wallet(self) -> TestWallet:
        """One-SOL wallet for the attacker side of a scenario."""
        return await self.create_test_wallet("Malicious", 1)

    @staticmethod
    def create_dummy_accounts(count: int) -> List[Pubkey]:
        return [Keypair().pubkey() for _ in range(count)]
