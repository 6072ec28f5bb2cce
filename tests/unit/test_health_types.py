"""Status ordering, parsing and check configuration inheritance."""

from types import SimpleNamespace

import pytest

from statuspage.services.health import (
    CheckType,
    EntityRef,
    EntityType,
    Status,
    resolve_effective_config,
)


def _entity(**overrides):
    fields = dict(
        check_type="HTTP_GET",
        check_url="http://svc/health",
        check_interval_seconds=30,
        check_timeout_seconds=5,
        check_expected_status=200,
        check_failure_threshold=3,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestStatus:
    def test_severity_order(self):
        assert (
            Status.OPERATIONAL.severity
            < Status.DEGRADED.severity
            < Status.PARTIAL_OUTAGE.severity
            < Status.MAJOR_OUTAGE.severity
        )

    def test_maintenance_has_no_severity(self):
        assert Status.MAINTENANCE.severity == 0
        assert Status.MAINTENANCE.is_operational

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("MAJOR_OUTAGE", Status.MAJOR_OUTAGE),
            ("degraded", Status.DEGRADED),
            ("DEGRADED_PERFORMANCE", Status.DEGRADED),
            ("UNDER_MAINTENANCE", Status.MAINTENANCE),
            ("", Status.OPERATIONAL),
            (None, Status.OPERATIONAL),
            ("bogus", Status.OPERATIONAL),
        ],
    )
    def test_parse(self, raw, expected):
        assert Status.parse(raw) == expected

    def test_worst_of_empty_is_operational(self):
        assert Status.worst() == Status.OPERATIONAL

    def test_worst_picks_highest_severity(self):
        assert Status.worst("OPERATIONAL", "DEGRADED", "MAJOR_OUTAGE", "PARTIAL_OUTAGE") == Status.MAJOR_OUTAGE

    def test_worst_ignores_maintenance(self):
        assert Status.worst(Status.MAINTENANCE, Status.DEGRADED) == Status.DEGRADED
        assert Status.worst(Status.MAINTENANCE) == Status.OPERATIONAL


class TestCheckType:
    def test_parse_known(self):
        assert CheckType.parse("tcp_port") == CheckType.TCP_PORT

    def test_parse_unknown_is_none(self):
        assert CheckType.parse("SMTP") == CheckType.NONE
        assert CheckType.parse(None) == CheckType.NONE


def test_entity_ref_str():
    assert str(EntityRef(EntityType.COMPONENT, "c1")) == "component:c1"


class TestResolveEffectiveConfig:
    def test_own_configuration(self):
        config = resolve_effective_config(_entity(check_inherit_from_app=False))
        assert config.check_type == CheckType.HTTP_GET
        assert config.url == "http://svc/health"
        assert config.interval_seconds == 30

    def test_component_inherits_from_app(self):
        component = _entity(check_inherit_from_app=True, check_type="NONE", check_url=None)
        app = _entity(check_type="TCP_PORT", check_url="db:5432", check_failure_threshold=5)
        config = resolve_effective_config(component, app)
        assert config.check_type == CheckType.TCP_PORT
        assert config.url == "db:5432"
        assert config.failure_threshold == 5

    def test_inherit_without_parent_uses_own(self):
        component = _entity(check_inherit_from_app=True)
        assert resolve_effective_config(component, None).url == "http://svc/health"

    def test_inherit_flag_off_ignores_parent(self):
        component = _entity(check_inherit_from_app=False)
        app = _entity(check_url="http://other/")
        assert resolve_effective_config(component, app).url == "http://svc/health"

    def test_missing_values_fall_back_to_defaults(self):
        entity = _entity(
            check_interval_seconds=None,
            check_timeout_seconds=0,
            check_expected_status=None,
            check_failure_threshold=0,
            check_url="   ",
        )
        config = resolve_effective_config(entity, default_interval=120, default_timeout=7)
        assert config.interval_seconds == 120
        assert config.timeout_seconds == 7
        assert config.expected_status == 200
        assert config.failure_threshold == 3
        assert config.url is None
