"""Unit tests for the violation log."""

import pytest

from admission.adapters.rate_limit.base import AdmissionDecision
from admission.core.logging import hash_identifier
from admission.services.violation_log import ViolationLog


def _denied(denied_by: str = "quota", limit: int = 5) -> AdmissionDecision:
    return AdmissionDecision(
        allowed=False,
        limit=limit,
        remaining=0,
        reset_time=0,
        retry_after_ms=1_500,
        denied_by=denied_by,
    )


def test_record_stores_hashed_key(violation_log, clock) -> None:
    violation = violation_log.record("ip:10.0.0.1", "ip", _denied(), path="/v1/admission/stats")

    assert violation.key_hash == hash_identifier("ip:10.0.0.1")
    assert "10.0.0.1" not in str(violation.to_dict())
    assert violation.occurred_at == clock.now
    assert violation.retry_after_ms == 1_500
    assert violation.path == "/v1/admission/stats"


def test_recent_returns_newest_first(violation_log, clock) -> None:
    violation_log.record("a", "identifier", _denied())
    clock.advance(10)
    violation_log.record("b", "identifier", _denied())

    entries = violation_log.recent()

    assert [v.key_hash for v in entries] == [hash_identifier("b"), hash_identifier("a")]


def test_recent_filters(violation_log) -> None:
    violation_log.record("ip:1", "ip", _denied("quota"))
    violation_log.record("user:u:login", "user", _denied("quota"))
    violation_log.record("burst-key", "identifier", _denied("burst"))

    assert len(violation_log.recent(scope="ip")) == 1
    assert len(violation_log.recent(denied_by="burst")) == 1
    assert len(violation_log.recent(limit=2)) == 2


def test_entries_expire_after_retention(violation_log, clock) -> None:
    violation_log.record("a", "identifier", _denied())
    clock.advance(60_000)

    assert violation_log.recent() == []
    assert len(violation_log) == 0


def test_max_entries_bounds_history(clock) -> None:
    log = ViolationLog(retention_ms=60_000, max_entries=3, clock=clock)
    for i in range(5):
        log.record(f"k{i}", "identifier", _denied())

    assert len(log) == 3
    assert log.summary()["total_recorded"] == 5


def test_summary_counts(violation_log) -> None:
    violation_log.record("ip:1", "ip", _denied("quota"))
    violation_log.record("ip:2", "ip", _denied("burst"))
    violation_log.record("user:u:a", "user", _denied("quota"))

    summary = violation_log.summary()

    assert summary["retained"] == 3
    assert summary["by_scope"] == {"ip": 2, "user": 1}
    assert summary["by_denied_by"] == {"quota": 2, "burst": 1}


def test_clear(violation_log) -> None:
    violation_log.record("a", "identifier", _denied())

    violation_log.clear()

    assert len(violation_log) == 0
    assert violation_log.summary()["total_recorded"] == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"retention_ms": 0},
        {"max_entries": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        ViolationLog(**kwargs)


def test_each_violation_gets_an_id(violation_log) -> None:
    first = violation_log.record("a", "identifier", _denied())
    second = violation_log.record("a", "identifier", _denied())

    assert first.id and second.id
    assert first.id != second.id
    assert first.resolved is False


def test_record_block(violation_log) -> None:
    violation = violation_log.record_block("ip:203.0.113.7", "ip", reason="scan", path="/x")

    assert violation.denied_by == "blocked"
    assert violation.reason == "scan"
    assert violation.retry_after_ms is None
    assert violation_log.summary()["by_denied_by"] == {"blocked": 1}


def test_resolve(violation_log) -> None:
    violation = violation_log.record("a", "identifier", _denied())
    violation_log.record("b", "identifier", _denied())

    resolved = violation_log.resolve(violation.id)

    assert resolved is not None
    assert resolved.resolved is True
    assert resolved.id == violation.id
    assert [v.id for v in violation_log.recent(resolved=True)] == [violation.id]
    assert len(violation_log.recent(resolved=False)) == 1
    assert violation_log.summary()["unresolved"] == 1


def test_resolve_unknown_or_pruned(violation_log, clock) -> None:
    violation = violation_log.record("a", "identifier", _denied())
    clock.advance(60_000)

    assert violation_log.resolve("missing") is None
    assert violation_log.resolve(violation.id) is None
