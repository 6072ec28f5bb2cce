"""Global health check settings stored in the system_config table."""

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import statuspage.core.database as db_module
from statuspage.config import settings
from statuspage.core.database import SystemConfig
from statuspage.core.exceptions import ValidationError

logger = structlog.get_logger()

KEY_ENABLED = "health_check.enabled"
KEY_SCHEDULER_INTERVAL_MS = "health_check.scheduler_interval_ms"
KEY_THREAD_POOL_SIZE = "health_check.thread_pool_size"
KEY_DEFAULT_INTERVAL_SECONDS = "health_check.default_interval_seconds"
KEY_DEFAULT_TIMEOUT_SECONDS = "health_check.default_timeout_seconds"

_MINIMUMS = {
    KEY_SCHEDULER_INTERVAL_MS: 100,
    KEY_THREAD_POOL_SIZE: 1,
    KEY_DEFAULT_INTERVAL_SECONDS: 1,
    KEY_DEFAULT_TIMEOUT_SECONDS: 1,
}


@dataclass(frozen=True)
class HealthCheckSettings:
    enabled: bool
    scheduler_interval_ms: int
    thread_pool_size: int
    default_interval_seconds: int
    default_timeout_seconds: int


def _defaults() -> dict[str, str]:
    return {
        KEY_ENABLED: str(settings.status_health_check_enabled).lower(),
        KEY_SCHEDULER_INTERVAL_MS: str(settings.status_scheduler_interval_ms),
        KEY_THREAD_POOL_SIZE: str(settings.status_thread_pool_size),
        KEY_DEFAULT_INTERVAL_SECONDS: str(settings.status_default_interval_seconds),
        KEY_DEFAULT_TIMEOUT_SECONDS: str(settings.status_default_timeout_seconds),
    }


def _parse_int(raw: dict[str, str], defaults: dict[str, str], key: str) -> int:
    try:
        value = int(raw[key])
    except (TypeError, ValueError):
        logger.warning("health_check_setting_invalid", key=key, value=raw.get(key), default=defaults[key])
        return int(defaults[key])
    if value < _MINIMUMS[key]:
        logger.warning("health_check_setting_out_of_range", key=key, value=value, default=defaults[key])
        return int(defaults[key])
    return value


class HealthCheckSettingsService:
    """Reads and writes the scheduler's global configuration.

    Values are re-read at the start of every scheduler tick, so changes made
    through the API take effect without a restart.
    """

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def get_raw(self) -> dict[str, str]:
        """Stored values merged over environment defaults.

        Falls back to the defaults if the table cannot be read.
        """
        values = _defaults()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SystemConfig).where(SystemConfig.key.in_(values.keys()))
                )
                for row in result.scalars().all():
                    values[row.key] = row.value
        except Exception as e:
            logger.debug("health_check_settings_read_fallback", reason=str(e))
        return values

    async def get_settings(self) -> HealthCheckSettings:
        raw = await self.get_raw()
        defaults = _defaults()
        return HealthCheckSettings(
            enabled=raw[KEY_ENABLED].strip().lower() in ("true", "1", "yes", "on"),
            scheduler_interval_ms=_parse_int(raw, defaults, KEY_SCHEDULER_INTERVAL_MS),
            thread_pool_size=_parse_int(raw, defaults, KEY_THREAD_POOL_SIZE),
            default_interval_seconds=_parse_int(raw, defaults, KEY_DEFAULT_INTERVAL_SECONDS),
            default_timeout_seconds=_parse_int(raw, defaults, KEY_DEFAULT_TIMEOUT_SECONDS),
        )

    async def update_settings(self, updates: dict[str, str]) -> HealthCheckSettings:
        """Persist setting values. Unknown keys and non-integer numbers are rejected."""
        defaults = _defaults()
        for key, value in updates.items():
            if key not in defaults:
                raise ValidationError(f"Unknown health check setting: {key}")
            if key in _MINIMUMS:
                try:
                    number = int(value)
                except (TypeError, ValueError) as e:
                    raise ValidationError(f"Setting {key} must be an integer.") from e
                if number < _MINIMUMS[key]:
                    raise ValidationError(f"Setting {key} must be at least {_MINIMUMS[key]}.")

        async with self._session_factory() as session:
            for key, value in updates.items():
                row = await session.get(SystemConfig, key)
                if row is None:
                    session.add(SystemConfig(key=key, value=str(value)))
                else:
                    row.value = str(value)
                    row.updated_at = datetime.now(timezone.utc)
                logger.info("health_check_setting_updated", key=key, value=str(value))
            await session.commit()

        return await self.get_settings()
