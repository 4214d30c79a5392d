"""Network adapters: transaction simulation, signature history and pubsub subscriptions."""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solana.rpc.websocket_api import connect
from solders.message import Message
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.rpc.responses import SubscriptionError, SubscriptionResult
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .config import REQUEST_TIMEOUT, ClusterConfig
from .models import AccountChangeEvent, CandidateTransaction, LogEvent, SignatureRecord, SimulationOutcome

LogCallback = Callable[[LogEvent], None]
AccountCallback = Callable[[AccountChangeEvent], None]


def build_client(cluster: ClusterConfig, timeout: float = REQUEST_TIMEOUT) -> AsyncClient:
    logging.info("RPC endpoint: %s", cluster.endpoint)
    return AsyncClient(cluster.endpoint, timeout=timeout)


def build_unsigned_transaction(tx: CandidateTransaction, blockhash: Any) -> VersionedTransaction:
    """Wrap the candidate in a transaction carrying placeholder signatures."""
    message = Message.new_with_blockhash(list(tx.instructions), tx.payer, blockhash)
    signatures = [Signature.default()] * message.header.num_required_signatures
    return VersionedTransaction.populate(message, signatures)


class RpcSimulationEndpoint:
    """Runs candidate transactions through ``simulateTransaction``. Nothing is committed."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def simulate(self, tx: CandidateTransaction) -> SimulationOutcome:
        """Simulate ``tx`` unsigned against the latest blockhash."""
        try:
            blockhash = (await self.client.get_latest_blockhash()).value.blockhash
            transaction = build_unsigned_transaction(tx, blockhash)
            response = await self.client.simulate_transaction(transaction, sig_verify=False)
        except RPCException as exc:
            raise RuntimeError(f"RPC error: {exc}") from exc

        value = response.value
        return SimulationOutcome(
            success=value.err is None,
            error=value.err,
            units_consumed=value.units_consumed,
            logs=tuple(value.logs or ()),
        )


class RpcSignatureSource:
    def __init__(self, client: AsyncClient):
        self.client = client

    async def fetch_signatures(self, program: str, limit: int) -> List[SignatureRecord]:
        """Recent signatures for ``program``, newest first."""
        logging.debug("Fetching up to %d signatures for %s", limit, program)
        try:
            response = await self.client.get_signatures_for_address(Pubkey.from_string(program), limit=limit)
        except RPCException as exc:
            raise RuntimeError(f"RPC error: {exc}") from exc

        return [
            SignatureRecord(
                signature=str(entry.signature),
                slot=entry.slot,
                err=entry.err,
                block_time=entry.block_time,
            )
            for entry in response.value
        ]


@dataclass
class _Subscription:
    kind: str
    target: str
    callback: Callable[[Any], None]


class WebsocketSubscriptionSource:
    """Multiplexes logs, program and account subscriptions over one websocket.

    Only one coroutine reads the socket at a time. Subscribe requests carry a
    request id; the confirmation with that id resolves the pending subscribe,
    whoever happens to read it. Notifications read while a subscribe waits are
    dispatched like any other, so ``listen()`` can run before, during or after
    subscribing.
    """

    def __init__(self, ws_endpoint: str, commitment: str = "confirmed"):
        self.ws_endpoint = ws_endpoint
        self.commitment = commitment
        self._connection = None
        self._websocket = None
        self._subscriptions: Dict[int, _Subscription] = {}
        self._pending: Dict[int, Tuple[_Subscription, asyncio.Future]] = {}
        self._request_ids = itertools.count(1)
        self._read_lock = asyncio.Lock()

    async def open(self) -> None:
        if self._websocket is not None:
            return
        logging.info("Websocket endpoint: %s", self.ws_endpoint)
        self._connection = connect(self.ws_endpoint)
        self._websocket = await self._connection.__aenter__()

    async def close(self) -> None:
        """Cancel pending subscriptions and close the socket."""
        if self._connection is None:
            return
        await self._connection.__aexit__(None, None, None)
        self._connection = None
        self._websocket = None
        self._subscriptions.clear()
        for _, future in self._pending.values():
            future.cancel()
        self._pending.clear()

    def _register(self, subscription: _Subscription) -> Tuple[int, asyncio.Future]:
        request_id = next(self._request_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (subscription, future)
        return request_id, future

    async def _read_once(self, pending: Optional[asyncio.Future] = None) -> None:
        async with self._read_lock:
            # another reader may have resolved it while we queued for the lock
            if pending is not None and pending.done():
                return
            messages = await self._websocket.recv()
            for message in messages:
                self.handle_message(message)

    async def _wait_confirmed(self, future: asyncio.Future) -> int:
        while not future.done():
            await self._read_once(future)
        return future.result()

    async def subscribe_logs(self, program: str, callback: LogCallback) -> int:
        """Subscribe to logs mentioning ``program``; returns the confirmed subscription id."""
        await self.open()
        request_id, future = self._register(_Subscription("logs", program, callback))
        await self._websocket.logs_subscribe(
            RpcTransactionLogsFilterMentions(Pubkey.from_string(program)),
            commitment=self.commitment,
            request_id=request_id,
        )
        return await self._wait_confirmed(future)

    async def subscribe_program_accounts(self, program: str, callback: AccountCallback) -> int:
        await self.open()
        request_id, future = self._register(_Subscription("program", program, callback))
        await self._websocket.program_subscribe(
            Pubkey.from_string(program), commitment=self.commitment, request_id=request_id
        )
        return await self._wait_confirmed(future)

    async def subscribe_account(self, account: str, callback: AccountCallback) -> int:
        await self.open()
        request_id, future = self._register(_Subscription("account", account, callback))
        await self._websocket.account_subscribe(
            Pubkey.from_string(account), commitment=self.commitment, request_id=request_id
        )
        return await self._wait_confirmed(future)

    async def unsubscribe(self, subscription_id: int) -> None:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None or self._websocket is None:
            raise RuntimeError(f"Unknown subscription {subscription_id}")
        if subscription.kind == "logs":
            await self._websocket.logs_unsubscribe(subscription_id)
        elif subscription.kind == "program":
            await self._websocket.program_unsubscribe(subscription_id)
        else:
            await self._websocket.account_unsubscribe(subscription_id)

    async def listen(self) -> None:
        """Read and dispatch until cancelled."""
        await self.open()
        while self._websocket is not None:
            await self._read_once()

    def handle_message(self, message: Any) -> None:
        """Route one parsed websocket message: confirmation, refusal or notification."""
        if isinstance(message, SubscriptionResult):
            pending = self._pending.pop(message.id, None)
            if pending is None:
                return
            subscription, future = pending
            self._subscriptions[message.result] = subscription
            logging.debug("Subscribed %s for %s (id %s)", subscription.kind, subscription.target, message.result)
            if not future.done():
                future.set_result(message.result)
        elif isinstance(message, SubscriptionError):
            pending = self._pending.pop(message.id, None)
            if pending is not None and not pending[1].done():
                pending[1].set_exception(RuntimeError(f"Subscription refused: {message.error}"))
        else:
            self.dispatch(message)

    def dispatch(self, message: Any) -> None:
        """Hand a notification to the callback registered for its subscription."""
        subscription = self._subscriptions.get(getattr(message, "subscription", None))
        if subscription is None:
            return
        context = message.result.context
        value = message.result.value
        if subscription.kind == "logs":
            subscription.callback(
                LogEvent(
                    program=subscription.target,
                    signature=str(value.signature),
                    logs=list(value.logs),
                    err=value.err,
                    slot=context.slot,
                )
            )
        elif subscription.kind == "program":
            account = value.account
            subscription.callback(
                AccountChangeEvent(
                    program=subscription.target,
                    account=str(value.pubkey),
                    slot=context.slot,
                    lamports=account.lamports,
                    data_size=len(account.data),
                )
            )
        else:
            subscription.callback(
                AccountChangeEvent(
                    program=str(value.owner),
                    account=subscription.target,
                    slot=context.slot,
                    lamports=value.lamports,
                    data_size=len(value.data),
                )
            )
