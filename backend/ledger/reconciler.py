"""Batched, rate-limited refresh of the market set from the ledger."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from loguru import logger

from app.core.config import Settings
from app.core.networks import NetworkConfig
from app.domain import Market, MarketStatus, Participant
from app.domain.protocol import MAX_ESCALATIONS

from .client import LedgerClient
from .errors import LedgerError, LedgerTransientError
from .normalize import build_market, build_participants
from .policy import BatchPolicy, RetryPolicy
from .types import MarketIdentity

T = TypeVar("T")
I = TypeVar("I")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class ReconcileProgress:
    loaded: int
    total: int
    message: str


ProgressListener = Callable[[ReconcileProgress | None], None]


@dataclass(slots=True)
class ReconcileResult:
    network: str
    started_at: float
    markets: list[Market] = field(default_factory=list)
    participants: list[Participant] = field(default_factory=list)
    total: int = 0
    failed_identities: list[int] = field(default_factory=list)
    failed_details: list[int] = field(default_factory=list)
    cancelled: bool = False
    error: str | None = None
    finished_at: float | None = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return max(0.0, self.finished_at - self.started_at)

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "total": self.total,
            "loaded": len(self.markets),
            "participants": len(self.participants),
            "failed_identities": list(self.failed_identities),
            "failed_details": list(self.failed_details),
            "cancelled": self.cancelled,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class ChainReconciler:
    """Refreshes every market of one network from a :class:`LedgerClient`.

    Reads run in concurrent groups sized by the batch policy, transient failures
    are retried per the retry policy, and anything still failing afterwards is
    dropped for that one market only. Starting a pass aborts the one in flight;
    the old pass stops at its next batch boundary and reports ``cancelled``.
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        network: NetworkConfig,
        batch_policy: BatchPolicy,
        retry_policy: RetryPolicy,
        progress_clear_delay: float = 2.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        on_progress: ProgressListener | None = None,
    ) -> None:
        self.client = client
        self.network = network
        self.batch_policy = batch_policy
        self.retry_policy = retry_policy
        self.progress_clear_delay = progress_clear_delay
        self._sleep = sleep
        self._clock = clock
        self._listeners: list[ProgressListener] = [on_progress] if on_progress else []
        self._progress: ReconcileProgress | None = None
        self._lock = asyncio.Lock()
        self._abort: asyncio.Event | None = None
        self._generation = 0
        self._clear_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls, client: LedgerClient, settings: Settings, **kwargs: Any
    ) -> "ChainReconciler":
        return cls(
            client,
            network=settings.network_config,
            batch_policy=BatchPolicy.from_settings(settings),
            retry_policy=RetryPolicy.from_settings(settings),
            progress_clear_delay=settings.progress_clear_delay_seconds,
            **kwargs,
        )

    @property
    def progress(self) -> ReconcileProgress | None:
        return self._progress

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    async def wait_idle(self) -> None:
        """Wait until the delayed progress reset of the last pass has run."""

        if self._clear_task is not None:
            await self._clear_task

    async def reconcile(self) -> ReconcileResult:
        if self._abort is not None:
            self._abort.set()
        abort = asyncio.Event()
        self._abort = abort
        self._generation += 1
        generation = self._generation

        async with self._lock:
            result = ReconcileResult(network=self.network.name.value, started_at=self._clock())
            self._progress = None
            if abort.is_set():
                result.cancelled = True
            else:
                logger.info("Reconciling {} markets", self.network.display_name)
                await self._run(result, abort)
            result.finished_at = self._clock()
            if result.cancelled:
                logger.info("Reconcile pass on {} superseded", self.network.display_name)
            else:
                logger.info(
                    "Reconciled {} of {} markets on {} in {:.2f}s ({} identity failures, {} detail failures)",
                    len(result.markets),
                    result.total,
                    self.network.display_name,
                    result.duration_seconds,
                    len(result.failed_identities),
                    len(result.failed_details),
                )
            if self._abort is abort:
                self._abort = None
            self._schedule_clear(generation)
            return result

    async def _run(self, result: ReconcileResult, abort: asyncio.Event) -> None:
        self._report(0, 0, "Fetching market count...")
        count = await self._call("market count", self.client.market_count)
        if count is None:
            result.error = "Failed to fetch market count"
            self._report(0, 0, result.error)
            return

        result.total = count
        if count == 0:
            self._report(0, 0, "No markets found")
            return

        total_units = 2 * count
        self._report(0, total_units, f"Loading {count} markets...")

        async def fetch_identity(index: int) -> MarketIdentity | None:
            return await self._call(
                f"market identity #{index}", lambda: self.client.market_identity(index)
            )

        identities = await self._in_batches(
            list(range(count)),
            fetch_identity,
            abort,
            loaded_offset=0,
            total_units=total_units,
            message="Discovering markets",
        )
        if identities is None:
            result.cancelled = True
            return

        found: list[MarketIdentity] = []
        for index, identity in enumerate(identities):
            if identity is None:
                result.failed_identities.append(index)
            else:
                found.append(identity)
        if result.failed_identities:
            logger.warning(
                "{} market identities unavailable: {}",
                len(result.failed_identities),
                result.failed_identities,
            )

        # Identities that failed discovery count as done for the detail phase.
        offset = count + len(result.failed_identities)
        self._report(offset, total_units, f"Fetching details for {len(found)} markets...")

        markets = await self._in_batches(
            found,
            self._fetch_market,
            abort,
            loaded_offset=offset,
            total_units=total_units,
            message="Loading market details",
        )
        if markets is None:
            result.cancelled = True
            return

        for identity, fetched in zip(found, markets):
            if fetched is None:
                result.failed_details.append(identity.index)
                continue
            market, participants = fetched
            result.markets.append(market)
            result.participants.extend(participants)
        result.markets.sort(key=lambda market: market.id)
        self._report(total_units, total_units, f"Loaded {len(result.markets)} markets")

    async def _in_batches(
        self,
        items: list[I],
        worker: Callable[[I], Awaitable[T | None]],
        abort: asyncio.Event,
        *,
        loaded_offset: int,
        total_units: int,
        message: str,
    ) -> list[T | None] | None:
        """Run ``worker`` over ``items`` in policy-sized groups; ``None`` means aborted."""

        size = self.batch_policy.batch_size
        results: list[T | None] = []
        for start in range(0, len(items), size):
            if abort.is_set():
                return None
            batch = items[start : start + size]
            results.extend(await asyncio.gather(*(worker(item) for item in batch)))
            if abort.is_set():
                return None
            self._report(
                loaded_offset + len(results),
                total_units,
                f"{message} ({len(results)}/{len(items)})",
            )
            if start + size < len(items) and self.batch_policy.batch_delay > 0:
                await self._sleep(self.batch_policy.batch_delay)
        return results

    async def _fetch_market(
        self, identity: MarketIdentity
    ) -> tuple[Market, list[Participant]] | None:
        label = f"market #{identity.index}"
        lifecycle = await self._call(
            f"{label} lifecycle", lambda: self.client.lifecycle_state(identity.address)
        )
        if lifecycle is None:
            return None
        await self._pause()
        question = await self._call(
            f"{label} question", lambda: self.client.question_text(identity.address)
        )
        if question is None:
            logger.warning("Question text unavailable for {}; using placeholder", label)

        status = MarketStatus.from_ledger_state(lifecycle.state)
        proposal = guard = veto = rebate = resolver = None

        if status in (MarketStatus.PROPOSED, MarketStatus.CHALLENGED, MarketStatus.RESOLVED):
            await self._pause()
            proposal = await self._call(
                f"{label} proposal", lambda: self.client.current_proposal(identity.address)
            )

        wants_veto = status is MarketStatus.VOTING or (
            status is MarketStatus.RESOLVED and lifecycle.escalation_count >= MAX_ESCALATIONS
        )
        if wants_veto:
            await self._pause()
            guard = await self._call(
                f"{label} veto guard",
                lambda: self.client.veto_guard_ref(self.network.master_oracle, identity.address),
            )
            if guard:
                await self._pause()
                veto = await self._call(
                    f"{label} veto status", lambda: self.client.veto_status(guard)
                )

        if status is MarketStatus.RESOLVED:
            await self._pause()
            rebate = await self._call(
                f"{label} creator rebate", lambda: self.client.creator_rebate(identity.address)
            )
            await self._pause()
            resolver = await self._call(
                f"{label} resolver reward", lambda: self.client.resolver_reward(identity.address)
            )

        participants: list[Participant] = []
        if status is not MarketStatus.OPEN:
            await self._pause()
            transfers = await self._call(
                f"{label} bond transfers", lambda: self.client.bond_transfers(identity.address)
            )
            if transfers is not None:
                participants = build_participants(identity.address, transfers)

        market = build_market(
            identity,
            lifecycle,
            question,
            network=self.network.name,
            proposal=proposal,
            veto_guard_address=guard,
            veto=veto,
            rebate=rebate,
            resolver=resolver,
        )
        return market, participants

    async def _call(self, label: str, request: Callable[[], Awaitable[T]]) -> T | None:
        attempts = self.retry_policy.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await request()
            except LedgerTransientError as exc:
                if attempt >= attempts:
                    logger.warning("{} failed after {} attempts: {}", label, attempt, exc)
                    return None
                delay = self.retry_policy.delay_for(attempt - 1)
                logger.warning(
                    "{} failed ({}); retry {}/{} in {}s",
                    label,
                    exc,
                    attempt,
                    attempts - 1,
                    delay,
                )
                await self._sleep(delay)
            except LedgerError as exc:
                logger.warning("{} unavailable: {}", label, exc)
                return None
            except Exception as exc:  # noqa: BLE001
                logger.opt(exception=exc).warning("{} raised unexpectedly", label)
                return None
        return None

    async def _pause(self) -> None:
        if self.batch_policy.call_delay > 0:
            await self._sleep(self.batch_policy.call_delay)

    def _report(self, loaded: int, total: int, message: str) -> None:
        current = self._progress
        if current is not None and current.total == total and loaded < current.loaded:
            loaded = current.loaded
        self._set_progress(ReconcileProgress(loaded=loaded, total=total, message=message))

    def _set_progress(self, progress: ReconcileProgress | None) -> None:
        self._progress = progress
        for listener in self._listeners:
            listener(progress)

    def _schedule_clear(self, generation: int) -> None:
        async def clear_later() -> None:
            await self._sleep(self.progress_clear_delay)
            if self._generation == generation and not self._lock.locked():
                self._set_progress(None)

        self._clear_task = asyncio.get_running_loop().create_task(clear_later())


__all__ = ["ChainReconciler", "ReconcileProgress", "ReconcileResult"]
