"""Background health check scheduler: selects due entities and probes them on a bounded pool."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.clock import Clock, as_utc, utc_now
from statuspage.core.database import StatusApp, StatusComponent, StatusPlatform
from statuspage.core.exceptions import ConfigurationError, NotFoundError
from statuspage.services.health import (
    CheckType,
    EffectiveCheckConfig,
    EntityRef,
    EntityType,
    ProbeResult,
    resolve_effective_config,
)
from statuspage.services.health.aggregator import StatusAggregator
from statuspage.services.health.probe import ProbeExecutor, validate_target
from statuspage.services.health.settings import HealthCheckSettings, HealthCheckSettingsService
from statuspage.services.maintenance import sync_maintenance_statuses
from statuspage.services.overlay import ENTITY_MODELS

logger = structlog.get_logger()


@dataclass(frozen=True)
class CheckOutcome:
    """Result of a manually triggered check."""

    ref: EntityRef
    success: bool
    message: str
    duration_ms: int
    timestamp: datetime
    status: str | None = None


@dataclass(frozen=True)
class _Candidate:
    ref: EntityRef
    config: EffectiveCheckConfig
    last_check_at: datetime | None


def is_due(last_check_at: datetime | None, interval_seconds: int, now: datetime) -> bool:
    if last_check_at is None:
        return True
    return now - as_utc(last_check_at) >= timedelta(seconds=interval_seconds)


class HealthCheckScheduler:
    """Periodically probes every enabled entity whose interval has elapsed.

    Each tick re-reads the global settings, so enabling, disabling and
    resizing take effect without a restart. Probes run as fire-and-forget
    tasks bounded by the pool size; one entity never has two probes in flight.
    Shrinking the pool holds new probes back until the running count drops
    below the new size.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        settings_service: HealthCheckSettingsService | None = None,
        executor: ProbeExecutor | None = None,
        aggregator: StatusAggregator | None = None,
        clock: Clock = utc_now,
    ):
        self._session_factory_override = session_factory
        self._settings_service = settings_service or HealthCheckSettingsService(session_factory)
        self._executor = executor or ProbeExecutor()
        self._aggregator = aggregator or StatusAggregator(session_factory, clock=clock)
        self._clock = clock

        self._pool_size = 0
        self._active = 0
        self._slot_freed = asyncio.Condition()
        self._entity_locks: dict[EntityRef, asyncio.Lock] = {}
        self._in_flight: set[EntityRef] = set()
        self._tasks: set[asyncio.Task] = set()
        self._warned: dict[EntityRef, str] = {}
        self._interval_ms = 10000

        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    @property
    def aggregator(self) -> StatusAggregator:
        return self._aggregator

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> set[EntityRef]:
        return set(self._in_flight)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the background polling task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("health_check_scheduler_started")

    async def stop(self) -> None:
        """Stop submitting ticks and let in-flight probes finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.wait_idle()
        logger.info("health_check_scheduler_stopped")

    async def wait_idle(self) -> None:
        """Wait for every dispatched probe to complete."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("health_check_scheduler_error")
            try:
                await asyncio.sleep(self._interval_ms / 1000)
            except asyncio.CancelledError:
                break

    # ── Tick ─────────────────────────────────────────────────────────────────

    async def tick(self) -> int:
        """Run one scheduling pass. Returns the number of probes dispatched."""
        config = await self._settings_service.get_settings()
        self._interval_ms = config.scheduler_interval_ms
        if not config.enabled:
            logger.debug("health_check_scheduler_disabled")
            return 0

        await self._resize_pool(config.thread_pool_size)
        now = self._clock()

        async with self._session_factory() as session:
            await sync_maintenance_statuses(session, now)

        dispatched = 0
        for candidate in await self._load_candidates(config):
            if not is_due(candidate.last_check_at, candidate.config.interval_seconds, now):
                continue
            if self._dispatch(candidate.ref, candidate.config):
                dispatched += 1

        if dispatched:
            logger.debug("health_check_tick", dispatched=dispatched, in_flight=len(self._in_flight))
        return dispatched

    async def trigger_all(self) -> int:
        """Dispatch every enabled, configured entity regardless of its interval."""
        config = await self._settings_service.get_settings()
        await self._resize_pool(config.thread_pool_size)
        dispatched = 0
        for candidate in await self._load_candidates(config):
            if self._dispatch(candidate.ref, candidate.config):
                dispatched += 1
        logger.info("health_check_trigger_all", dispatched=dispatched)
        return dispatched

    async def _resize_pool(self, size: int) -> None:
        if size == self._pool_size:
            return
        if self._pool_size:
            logger.info("health_check_pool_resized", previous=self._pool_size, size=size, active=self._active)
        async with self._slot_freed:
            self._pool_size = size
            self._slot_freed.notify_all()

    @asynccontextmanager
    async def _pool_slot(self):
        async with self._slot_freed:
            await self._slot_freed.wait_for(lambda: self._active < max(1, self._pool_size))
            self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            async with self._slot_freed:
                self._slot_freed.notify_all()

    async def _load_candidates(self, config: HealthCheckSettings) -> list[_Candidate]:
        """Entities with an enabled check, with component inheritance resolved."""
        defaults = {
            "default_interval": config.default_interval_seconds,
            "default_timeout": config.default_timeout_seconds,
        }
        candidates: list[_Candidate] = []

        async with self._session_factory() as session:
            platforms = (
                await session.execute(select(StatusPlatform).where(StatusPlatform.check_enabled == True))  # noqa: E712
            ).scalars().all()
            apps = (
                await session.execute(select(StatusApp).where(StatusApp.check_enabled == True))  # noqa: E712
            ).scalars().all()
            components = (
                await session.execute(select(StatusComponent).where(StatusComponent.check_enabled == True))  # noqa: E712
            ).scalars().all()

            parent_ids = {c.app_id for c in components if c.check_inherit_from_app}
            parents = {}
            if parent_ids:
                result = await session.execute(select(StatusApp).where(StatusApp.id.in_(parent_ids)))
                parents = {a.id: a for a in result.scalars().all()}

        loaded = (
            (EntityType.PLATFORM, platforms),
            (EntityType.APP, apps),
            (EntityType.COMPONENT, components),
        )
        for entity_type, rows in loaded:
            for entity in rows:
                parent = parents.get(entity.app_id) if entity_type == EntityType.COMPONENT else None
                effective = resolve_effective_config(entity, parent, **defaults)
                ref = EntityRef(entity_type, entity.id)
                if not self._is_probeable(ref, effective):
                    continue
                candidates.append(_Candidate(ref, effective, entity.last_check_at))

        self._prune({EntityRef(t, e.id) for t, rows in loaded for e in rows})
        return candidates

    def _is_probeable(self, ref: EntityRef, config: EffectiveCheckConfig) -> bool:
        try:
            validate_target(config)
        except ConfigurationError as e:
            key = f"{config.check_type.value}|{config.url}"
            if self._warned.get(ref) != key:
                logger.warning("health_check_misconfigured", entity=str(ref), reason=e.message)
                self._warned[ref] = key
            return False
        self._warned.pop(ref, None)
        return True

    def _prune(self, enabled: set[EntityRef]) -> None:
        """Forget per-entity bookkeeping for entities that are gone or disabled."""
        for ref in [r for r in self._warned if r not in enabled]:
            del self._warned[ref]
        for ref in [r for r in self._entity_locks if r not in enabled and r not in self._in_flight]:
            self._forget_lock(ref)

    def _forget_lock(self, ref: EntityRef) -> None:
        lock = self._entity_locks.get(ref)
        if lock is not None and not lock.locked():
            del self._entity_locks[ref]

    # ── Execution ────────────────────────────────────────────────────────────

    def _lock_for(self, ref: EntityRef) -> asyncio.Lock:
        lock = self._entity_locks.get(ref)
        if lock is None:
            lock = self._entity_locks[ref] = asyncio.Lock()
        return lock

    def _dispatch(self, ref: EntityRef, config: EffectiveCheckConfig) -> bool:
        if ref in self._in_flight:
            return False
        self._in_flight.add(ref)
        task = asyncio.create_task(self._run_scheduled(ref, config))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run_scheduled(self, ref: EntityRef, config: EffectiveCheckConfig) -> None:
        try:
            await self._execute(ref, config)
        except Exception:
            # State is left as-is; the entity stays due and is retried next tick
            logger.exception("health_check_execution_failed", entity=str(ref))
        finally:
            self._in_flight.discard(ref)

    async def _execute(self, ref: EntityRef, config: EffectiveCheckConfig) -> tuple[ProbeResult, str | None]:
        async with self._lock_for(ref):
            async with self._pool_slot():
                result = await self._executor.probe(config)
            status = await self._aggregator.record_result(ref, result, config.failure_threshold)
        if status is None:
            self._warned.pop(ref, None)
            self._forget_lock(ref)
            return result, None
        return result, status.value

    # ── Manual trigger ───────────────────────────────────────────────────────

    async def trigger_check(self, entity_type: EntityType, entity_id: str) -> CheckOutcome:
        """Probe one entity now, bypassing its interval.

        Raises NotFoundError for an unknown entity. A disabled or
        misconfigured check returns ``success=False`` without touching state.
        """
        ref = EntityRef(entity_type, entity_id)
        config = await self._settings_service.get_settings()
        await self._resize_pool(config.thread_pool_size)

        async with self._session_factory() as session:
            entity = await session.get(ENTITY_MODELS[entity_type], entity_id)
            if entity is None:
                raise NotFoundError(f"{entity_type.value.capitalize()} '{entity_id}' not found.")
            parent = None
            if entity_type == EntityType.COMPONENT and entity.check_inherit_from_app:
                parent = await session.get(StatusApp, entity.app_id)

        effective = resolve_effective_config(
            entity,
            parent,
            default_interval=config.default_interval_seconds,
            default_timeout=config.default_timeout_seconds,
        )

        if not entity.check_enabled:
            return self._rejected(ref, f"Health check is disabled for this {entity_type.value}")
        if effective.check_type == CheckType.NONE:
            return self._rejected(ref, "No check type configured")
        try:
            validate_target(effective)
        except ConfigurationError as e:
            return self._rejected(ref, e.message)

        result, status = await self._execute(ref, effective)
        logger.info(
            "health_check_triggered",
            entity=str(ref),
            success=result.success,
            duration_ms=result.duration_ms,
        )
        return CheckOutcome(
            ref=ref,
            success=result.success,
            message=result.message,
            duration_ms=result.duration_ms,
            timestamp=self._clock(),
            status=status,
        )

    def _rejected(self, ref: EntityRef, message: str) -> CheckOutcome:
        return CheckOutcome(ref=ref, success=False, message=message, duration_ms=0, timestamp=self._clock())
