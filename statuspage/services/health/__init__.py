"""Health check engine: shared enums and data types."""

from dataclasses import dataclass
from enum import Enum


class Status(str, Enum):
    """Entity status. Severity order: OPERATIONAL < DEGRADED < PARTIAL_OUTAGE < MAJOR_OUTAGE.

    MAINTENANCE is display-only and carries no severity in rollups.
    """

    OPERATIONAL = "OPERATIONAL"
    DEGRADED = "DEGRADED"
    PARTIAL_OUTAGE = "PARTIAL_OUTAGE"
    MAJOR_OUTAGE = "MAJOR_OUTAGE"
    MAINTENANCE = "MAINTENANCE"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def is_operational(self) -> bool:
        return self.severity == 0

    @classmethod
    def parse(cls, value: "str | Status | None") -> "Status":
        """Parse a stored status string. Unknown or empty values are OPERATIONAL."""
        if isinstance(value, Status):
            return value
        if not value:
            return cls.OPERATIONAL
        normalized = value.strip().upper()
        normalized = _ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return cls.OPERATIONAL

    @classmethod
    def worst(cls, *statuses: "str | Status | None") -> "Status":
        """Highest-severity status; OPERATIONAL when empty."""
        result = cls.OPERATIONAL
        for value in statuses:
            status = cls.parse(value)
            if status.severity > result.severity:
                result = status
        return result


_SEVERITY = {
    Status.OPERATIONAL: 0,
    Status.MAINTENANCE: 0,
    Status.DEGRADED: 1,
    Status.PARTIAL_OUTAGE: 2,
    Status.MAJOR_OUTAGE: 3,
}

_ALIASES = {
    "UNDER_MAINTENANCE": "MAINTENANCE",
    "DEGRADED_PERFORMANCE": "DEGRADED",
}


class CheckType(str, Enum):
    NONE = "NONE"
    PING = "PING"
    HTTP_GET = "HTTP_GET"
    HEALTH_ENDPOINT = "HEALTH_ENDPOINT"
    TCP_PORT = "TCP_PORT"

    @classmethod
    def parse(cls, value: "str | CheckType | None") -> "CheckType":
        if isinstance(value, CheckType):
            return value
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.NONE


class EntityType(str, Enum):
    PLATFORM = "platform"
    APP = "app"
    COMPONENT = "component"


@dataclass(frozen=True)
class EntityRef:
    """Identity of a checkable entity."""

    type: EntityType
    id: str

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


@dataclass(frozen=True)
class EffectiveCheckConfig:
    """Check configuration actually used for a probe, after inheritance."""

    check_type: CheckType
    url: str | None
    interval_seconds: int = 60
    timeout_seconds: int = 10
    expected_status: int = 200
    failure_threshold: int = 3


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe. Failures are values, never exceptions."""

    success: bool
    message: str
    duration_ms: int = 0


def resolve_effective_config(
    entity, parent_app=None, default_interval: int = 60, default_timeout: int = 10
) -> EffectiveCheckConfig:
    """Resolve the check configuration for an entity.

    Components with ``check_inherit_from_app`` take the parent app's
    configuration. Only configuration is inherited; status and counters
    always stay on the entity itself.
    """
    source = entity
    if getattr(entity, "check_inherit_from_app", False) and parent_app is not None:
        source = parent_app

    return EffectiveCheckConfig(
        check_type=CheckType.parse(source.check_type),
        url=(source.check_url or "").strip() or None,
        interval_seconds=source.check_interval_seconds or default_interval,
        timeout_seconds=source.check_timeout_seconds or default_timeout,
        expected_status=source.check_expected_status or 200,
        failure_threshold=max(1, source.check_failure_threshold or 3),
    )


__all__ = [
    "CheckType",
    "EffectiveCheckConfig",
    "EntityRef",
    "EntityType",
    "ProbeResult",
    "Status",
    "resolve_effective_config",
]
