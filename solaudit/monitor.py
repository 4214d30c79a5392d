"""Live log monitoring for deployed programs.

The monitor reacts to pubsub notifications delivered by a subscription source
(see ``rpc.WebsocketSubscriptionSource``) and publishes what it finds on an
``EventChannel``. Consumers subscribe to the channel; the monitor never holds a
reference to consumer state.

Published kinds: ``alert``, ``alert-logged``, ``stats-update`` and
``monitoring-stopped``.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import defaultdict, deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set

from .config import (
    HIGH_VALUE_LAMPORTS,
    HISTORY_LIMIT,
    LARGE_ACCOUNT_DATA_BYTES,
    RAPID_UPDATE_THRESHOLD,
    RAPID_UPDATE_WINDOW,
    STATS_REPORT_INTERVAL,
)
from .models import (
    AccountChangeEvent,
    Alert,
    AlertType,
    HistoricalSummary,
    LogEvent,
    MonitorEvent,
    MonitoringStats,
    Severity,
)
from .patterns import (
    FAILED_ATTACK_MARKERS,
    classify_error_bucket,
    describe_error,
    extract_transfer_amount,
    match_suspicious_pattern,
    matching_pattern_sources,
)

ALERT = "alert"
ALERT_LOGGED = "alert-logged"
STATS_UPDATE = "stats-update"
MONITORING_STOPPED = "monitoring-stopped"


class MonitorState(str, Enum):
    STOPPED = "stopped"
    MONITORING = "monitoring"


class EventChannel:
    """Fan-out of monitor events to any number of queues."""

    def __init__(self) -> None:
        self._subscribers: List[tuple] = []

    def subscribe(self, kinds: Optional[Iterable[str]] = None) -> asyncio.Queue:
        """Queue receiving the given kinds, or every kind when none are given."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append((frozenset(kinds) if kinds else None, queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers = [entry for entry in self._subscribers if entry[1] is not queue]

    def publish(self, kind: str, payload: Any) -> None:
        """Put ``payload`` on every queue subscribed to ``kind``."""
        event = MonitorEvent(kind=kind, payload=payload)
        for kinds, queue in self._subscribers:
            if kinds is None or kind in kinds:
                queue.put_nowait(event)


class LiveLogMonitor:
    def __init__(
        self,
        source: Any,
        signatures: Any = None,
        channel: Optional[EventChannel] = None,
        clock: Callable[[], float] = time.monotonic,
        stats_interval: float = STATS_REPORT_INTERVAL,
    ):
        self.source = source
        self.signatures = signatures
        self.channel = channel or EventChannel()
        self.clock = clock
        self.stats_interval = stats_interval
        self.state = MonitorState.STOPPED
        self.programs: Set[str] = set()
        self._stats = MonitoringStats()
        self._subscription_ids: List[int] = []
        self._account_updates: Dict[str, Deque[float]] = defaultdict(deque)
        self._stats_task: Optional[asyncio.Task] = None

    @property
    def is_monitoring(self) -> bool:
        return self.state is MonitorState.MONITORING

    @property
    def stats(self) -> MonitoringStats:
        return self._stats.snapshot()

    async def start(self, programs: Iterable[str]) -> None:
        """Subscribe to logs and account changes for every program, then start periodic stats."""
        if self.is_monitoring:
            logging.warning("Monitoring already active")
            return

        programs = [str(program) for program in programs]
        logging.info("Starting websocket monitoring...")
        self.state = MonitorState.MONITORING
        self.programs.update(programs)

        for program in programs:
            self._subscription_ids.append(await self.source.subscribe_logs(program, self.handle_logs))
            self._subscription_ids.append(
                await self.source.subscribe_program_accounts(program, self.handle_account_change)
            )

        self._stats_task = asyncio.ensure_future(self._stats_loop())
        logging.info("Monitoring %d programs", len(programs))

    async def stop(self) -> None:
        """Drop every subscription and the stats task; stats are kept."""
        logging.info("Stopping monitoring...")
        self.state = MonitorState.STOPPED

        if self._stats_task is not None:
            self._stats_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stats_task
            self._stats_task = None

        for subscription_id in self._subscription_ids:
            try:
                await self.source.unsubscribe(subscription_id)
            except Exception as exc:
                logging.error("Failed to remove subscription %s: %s", subscription_id, exc)

        self._subscription_ids = []
        self.channel.publish(MONITORING_STOPPED, self.stats)

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self.stats_interval)
            if not self.is_monitoring:
                return
            self.report_stats()

    def handle_logs(self, event: LogEvent) -> None:
        """Count one transaction and alert on its logs; errors also feed the pattern counters."""
        self._stats.total_transactions += 1
        self._stats.program_activity[event.program] += 1

        alert = self.analyze_logs(event)
        if alert is not None:
            self._stats.suspicious_transactions += 1
            self.generate_alert(alert)

        if event.err is not None:
            bucket = classify_error_bucket(event.err)
            if bucket:
                self._stats.attack_patterns[bucket] += 1

    def analyze_logs(self, event: LogEvent) -> Optional[Alert]:
        """Classify one transaction's logs; returns None when nothing looks off."""
        log_text = " ".join(event.logs).lower()
        metadata = {"logs": list(event.logs), "err": event.err}

        pattern = match_suspicious_pattern(log_text)
        if pattern is not None:
            return self._log_alert(
                event, AlertType.ATTACK, Severity.HIGH, f"Suspicious pattern detected: {pattern.pattern}", metadata
            )

        amount = extract_transfer_amount(log_text)
        if amount is not None and amount > HIGH_VALUE_LAMPORTS:
            return self._log_alert(
                event,
                AlertType.HIGH_VALUE,
                Severity.MEDIUM,
                f"High-value transfer detected: {amount} lamports",
                metadata,
            )

        if event.err is not None:
            error_text = describe_error(event.err).lower()
            if any(marker in error_text for marker in FAILED_ATTACK_MARKERS):
                return self._log_alert(
                    event, AlertType.ATTACK, Severity.HIGH, f"Failed attack attempt: {error_text}", metadata
                )

        return None

    @staticmethod
    def _log_alert(event: LogEvent, alert_type, severity, details: str, metadata: Dict) -> Alert:
        return Alert(
            type=alert_type,
            severity=severity,
            program=event.program,
            details=details,
            signature=event.signature,
            metadata=metadata,
        )

    def handle_account_change(self, event: AccountChangeEvent) -> None:
        """Alert when one account changes too often."""
        if self.is_rapid_update(event.account):
            self.generate_alert(
                Alert(
                    type=AlertType.ANOMALY,
                    severity=Severity.MEDIUM,
                    program=event.program,
                    details=f"Rapid state changes detected for account {event.account}",
                    signature=str(event.slot),
                )
            )

    def is_rapid_update(self, account: str) -> bool:
        """Record an update for ``account``; true once it exceeds the threshold within the window."""
        now = self.clock()
        window = self._account_updates[account]
        window.append(now)
        while window and now - window[0] >= RAPID_UPDATE_WINDOW:
            window.popleft()
        return len(window) > RAPID_UPDATE_THRESHOLD

    async def watch_account(self, account: str) -> int:
        """Subscribe to a single account and alert on oversized data or a drained balance."""
        subscription_id = await self.source.subscribe_account(str(account), self.handle_watched_account)
        self._subscription_ids.append(subscription_id)
        return subscription_id

    def handle_watched_account(self, event: AccountChangeEvent) -> None:
        """Alert when a watched account is drained or holds unusually large data."""
        if event.data_size is not None and event.data_size > LARGE_ACCOUNT_DATA_BYTES:
            self.generate_alert(
                Alert(
                    type=AlertType.ANOMALY,
                    severity=Severity.MEDIUM,
                    program=event.program,
                    details=f"Large data size detected: {event.data_size} bytes",
                    signature=str(event.slot),
                )
            )
        if event.lamports == 0:
            self.generate_alert(
                Alert(
                    type=AlertType.SUSPICIOUS,
                    severity=Severity.HIGH,
                    program=event.program,
                    details=f"Account {event.account} drained to zero balance",
                    signature=str(event.slot),
                )
            )

    def generate_alert(self, alert: Alert) -> None:
        """Publish an alert and log it by severity."""
        self._stats.alerts_generated += 1
        self.channel.publish(ALERT, alert)

        if alert.severity is Severity.CRITICAL:
            logging.error("CRITICAL ALERT: %s", alert.details)
        elif alert.severity is Severity.HIGH:
            logging.warning("HIGH ALERT: %s", alert.details)

        self.channel.publish(ALERT_LOGGED, alert)

    def report_stats(self) -> None:
        """Log a stats summary and publish the snapshot."""
        stats = self.stats
        logging.info("Monitoring statistics:")
        logging.info("  Total transactions: %d", stats.total_transactions)
        logging.info("  Suspicious transactions: %d", stats.suspicious_transactions)
        logging.info("  Alerts generated: %d", stats.alerts_generated)
        for program, count in stats.program_activity.items():
            logging.info("    %s...: %d transactions", program[:8], count)
        for pattern, count in stats.attack_patterns.items():
            logging.info("    %s: %d attempts", pattern, count)
        self.channel.publish(STATS_UPDATE, stats)

    async def analyze_historical_transactions(self, program: str, limit: int = HISTORY_LIMIT) -> HistoricalSummary:
        """Count failed transactions among recent signatures and collect the keywords their errors match."""
        logging.info("Analyzing last %d transactions for %s...", limit, program)
        try:
            records = await self.signatures.fetch_signatures(str(program), limit)
        except Exception as exc:
            logging.error("Failed to analyze historical transactions: %s", exc)
            return HistoricalSummary(suspicious_count=0, patterns=[])

        suspicious_count = 0
        patterns: List[str] = []
        for record in records:
            if record.err is None:
                continue
            suspicious_count += 1
            for source in matching_pattern_sources(describe_error(record.err).lower()):
                if source not in patterns:
                    patterns.append(source)

        return HistoricalSummary(suspicious_count=suspicious_count, patterns=patterns)
