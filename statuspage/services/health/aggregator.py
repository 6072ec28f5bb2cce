"""Status aggregator: failure-threshold state machine and component → app → platform rollup."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.clock import Clock, utc_now
from statuspage.core.database import StatusApp, StatusComponent, StatusPlatform
from statuspage.services.health import EntityRef, EntityType, ProbeResult, Status
from statuspage.services.overlay import ENTITY_MODELS, has_active_maintenance

logger = structlog.get_logger()

MAX_MESSAGE_LENGTH = 1000
DEFAULT_FAILURE_THRESHOLD = 3


@dataclass(frozen=True)
class StatusTransition:
    """A stored status change between operational and non-operational."""

    ref: EntityRef
    name: str
    previous: Status
    current: Status
    message: str | None = None


StatusNotifier = Callable[[StatusTransition], Awaitable[None]]


def apply_probe_result(entity, result: ProbeResult, failure_threshold: int, now) -> Status:
    """Apply one probe result to an entity's check state (pure, no I/O).

    Success resets the failure counter and marks the probe OPERATIONAL.
    Failure increments the counter; once it reaches the threshold the probe
    status becomes MAJOR_OUTAGE, below it the status is left unchanged.
    Returns the resulting probe status.
    """
    entity.last_check_at = now
    entity.last_check_success = result.success
    entity.last_check_message = (result.message or "")[:MAX_MESSAGE_LENGTH]

    if result.success:
        entity.consecutive_failures = 0
        entity.check_status = Status.OPERATIONAL.value
    else:
        entity.consecutive_failures = (entity.consecutive_failures or 0) + 1
        if entity.consecutive_failures >= max(1, failure_threshold or DEFAULT_FAILURE_THRESHOLD):
            entity.check_status = Status.MAJOR_OUTAGE.value
        else:
            entity.check_status = Status.parse(entity.check_status).value

    return Status.parse(entity.check_status)


def own_probe_status(entity) -> Status:
    """An entity's own probe contribution to its rollup."""
    if not entity.check_enabled:
        return Status.OPERATIONAL
    return Status.parse(entity.check_status)


class StatusAggregator:
    """Applies probe results to entity rows and recomputes ancestor status.

    Each probe completion writes only its own entity row. Ancestor rows are
    recomputed from their children's committed state under a per-ancestor
    lock, so concurrent sibling completions never lose an update.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utc_now,
        notifier: StatusNotifier | None = None,
    ):
        self._session_factory_override = session_factory
        self._clock = clock
        self._notifier = notifier
        self._rollup_locks: dict[EntityRef, asyncio.Lock] = {}

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    def _lock_for(self, ref: EntityRef) -> asyncio.Lock:
        lock = self._rollup_locks.get(ref)
        if lock is None:
            lock = self._rollup_locks[ref] = asyncio.Lock()
        return lock

    def forget(self, ref: EntityRef) -> None:
        """Drop the rollup lock of a deleted entity unless it is held."""
        lock = self._rollup_locks.get(ref)
        if lock is not None and not lock.locked():
            del self._rollup_locks[ref]

    async def record_result(
        self, ref: EntityRef, result: ProbeResult, failure_threshold: int
    ) -> Status | None:
        """Apply a probe result to ``ref`` and roll the change up.

        Returns the entity's stored status afterwards, or None if the entity
        no longer exists.
        """
        now = self._clock()
        transition = None

        async with self._session_factory() as session:
            async with session.begin():
                entity = await session.get(ENTITY_MODELS[ref.type], ref.id)
                if entity is None:
                    logger.debug("health_check_entity_gone", entity=str(ref))
                    return None

                previous = Status.parse(entity.status)
                probe_status = apply_probe_result(entity, result, failure_threshold, now)
                if ref.type == EntityType.COMPONENT:
                    entity.status = probe_status.value
                    if previous.is_operational != probe_status.is_operational:
                        transition = StatusTransition(ref, entity.name, previous, probe_status, result.message)
                app_id = entity.app_id if ref.type == EntityType.COMPONENT else None
                app_id = entity.id if ref.type == EntityType.APP else app_id
                platform_id = entity.id if ref.type == EntityType.PLATFORM else None
                failures = entity.consecutive_failures

            if not result.success:
                logger.warning(
                    "health_check_failed",
                    entity=str(ref),
                    consecutive_failures=failures,
                    threshold=failure_threshold,
                    message=result.message,
                )

        if transition:
            await self._emit(transition)

        if app_id is not None:
            status = await self.recompute_app(app_id)
            if ref.type == EntityType.APP:
                return status
        if platform_id is not None:
            return await self.recompute_platform(platform_id)
        return probe_status

    async def recompute_app(self, app_id: str) -> Status | None:
        """Recompute an app's status from its own probe and its components, then its platform."""
        ref = EntityRef(EntityType.APP, app_id)
        async with self._lock_for(ref):
            async with self._session_factory() as session:
                async with session.begin():
                    app = await session.get(StatusApp, app_id)
                    if app is not None:
                        result = await session.execute(
                            select(StatusComponent.status).where(StatusComponent.app_id == app_id)
                        )
                        previous = Status.parse(app.status)
                        current = Status.worst(own_probe_status(app), *result.scalars().all())
                        app.status = current.value
                        platform_id = app.platform_id
                        name = app.name
        if app is None:
            self.forget(ref)
            return None

        await self._after_rollup(ref, name, previous, current)
        if platform_id is not None:
            await self.recompute_platform(platform_id)
        return current

    async def recompute_platform(self, platform_id: str) -> Status | None:
        """Recompute a platform's status from its own probe and its apps."""
        ref = EntityRef(EntityType.PLATFORM, platform_id)
        async with self._lock_for(ref):
            async with self._session_factory() as session:
                async with session.begin():
                    platform = await session.get(StatusPlatform, platform_id)
                    if platform is not None:
                        result = await session.execute(
                            select(StatusApp.status).where(StatusApp.platform_id == platform_id)
                        )
                        previous = Status.parse(platform.status)
                        current = Status.worst(own_probe_status(platform), *result.scalars().all())
                        platform.status = current.value
                        name = platform.name
        if platform is None:
            self.forget(ref)
            return None

        await self._after_rollup(ref, name, previous, current)
        return current

    async def _after_rollup(self, ref: EntityRef, name: str, previous: Status, current: Status) -> None:
        if previous != current:
            logger.debug("status_rollup_changed", entity=str(ref), previous=previous.value, current=current.value)
        if previous.is_operational != current.is_operational:
            await self._emit(StatusTransition(ref, name, previous, current))

    async def _emit(self, transition: StatusTransition) -> None:
        log = logger.warning if not transition.current.is_operational else logger.info
        log(
            "status_changed",
            entity=str(transition.ref),
            name=transition.name,
            previous=transition.previous.value,
            current=transition.current.value,
        )
        if self._notifier is None:
            return
        try:
            await self._notifier(transition)
        except Exception:
            logger.exception("status_notifier_failed", entity=str(transition.ref))

    async def get_display_status(self, ref: EntityRef) -> Status:
        """Stored status, overridden by MAINTENANCE while a window covers the entity."""
        async with self._session_factory() as session:
            entity = await session.get(ENTITY_MODELS[ref.type], ref.id)
            if entity is None:
                return Status.OPERATIONAL
            if await has_active_maintenance(session, ref, self._clock()):
                return Status.MAINTENANCE
            return Status.parse(entity.status)
