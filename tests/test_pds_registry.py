"""PDS 注册表：幂等注册、扫描排期与失败退避。"""

import pytest

from src.core.errors import ValidationError
from src.sync.models import PDSStatus
from src.sync.pds_registry import normalize_pds_url

HOUR = 3600 * 1000


def test_normalize_pds_url():
    assert normalize_pds_url(" https://pds.test/ ") == "https://pds.test"
    with pytest.raises(ValidationError):
        normalize_pds_url("pds.test")
    with pytest.raises(ValidationError):
        normalize_pds_url("wss://pds.test")


def test_register_keeps_first_discovery(registry, clock):
    first = registry.register("https://pds.test/", source="firehose")
    clock.advance(1000)
    again = registry.register("https://pds.test", source="manual")
    assert again.discovery_source == "firehose"
    assert again.discovered_at == first.discovered_at
    assert registry.stats()["total"] == 1

    with pytest.raises(ValidationError):
        registry.register("https://other.test", source="gossip")


def test_scan_lifecycle(registry, clock):
    registry.register("https://a.test")
    registry.register("https://b.test")
    assert [e.pds_url for e in registry.list_for_scan()] == ["https://a.test", "https://b.test"]

    assert registry.mark_scan_started("https://a.test")
    assert registry.get("https://a.test").status == PDSStatus.SCANNING
    assert [e.pds_url for e in registry.list_for_scan()] == ["https://b.test"]

    registry.mark_scan_completed("https://a.test", next_scan_hours=6)
    a = registry.get("https://a.test")
    assert a.status == PDSStatus.ACTIVE
    assert a.next_scan_at == clock.now + 6 * HOUR
    assert "https://a.test" not in [e.pds_url for e in registry.list_for_scan()]

    clock.advance(6 * HOUR)
    assert "https://a.test" in [e.pds_url for e in registry.list_for_scan()]


def test_failures_back_off_then_unreachable(registry, clock):
    registry.register("https://flaky.test")
    delays = []
    for _ in range(5):
        entry = registry.mark_scan_failed("https://flaky.test", "connection refused")
        delays.append((entry.next_scan_at - clock.now) // HOUR)

    assert delays == [1, 2, 4, 8, 16]
    assert entry.consecutive_failures == 5
    assert entry.status == PDSStatus.UNREACHABLE
    assert entry.last_error == "connection refused"

    clock.advance(100 * HOUR)
    assert registry.list_for_scan() == []
    stats = registry.stats()
    assert stats["unreachable"] == 1 and stats["total"] == 1

    registry.mark_scan_completed("https://flaky.test")
    assert registry.get("https://flaky.test").consecutive_failures == 0


def test_mark_failed_unknown(registry):
    assert registry.mark_scan_failed("https://nobody.test", "x") is None
    assert registry.get("https://nobody.test") is None
