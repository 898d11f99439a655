import pytest
from loguru import logger

from app.core.settings import settings
from app.utils.perf import perf_span


@pytest.fixture
def records():
    captured = []
    hid = logger.add(lambda m: captured.append(m.record), level="DEBUG")
    yield captured
    logger.remove(hid)


def test_fast_span_is_quiet_by_default(records, monkeypatch):
    monkeypatch.setattr(settings, "PERF_LOG_UPSTREAM_ALWAYS", False)
    monkeypatch.setattr(settings, "PERF_LOG_SLOW_MS", 60_000)
    with perf_span("capital.prices", epic="AAPL"):
        pass
    assert records == []


def test_span_logs_op_tags_and_outcome(records, monkeypatch):
    monkeypatch.setattr(settings, "PERF_LOG_UPSTREAM_ALWAYS", True)
    monkeypatch.setattr(settings, "PERF_LOG_SLOW_MS", 60_000)
    with pytest.raises(RuntimeError):
        with perf_span("capital.prices", epic="AAPL", resolution=None):
            raise RuntimeError("boom")

    (rec,) = records
    assert rec["level"].name == "DEBUG"
    assert rec["message"].startswith("upstream capital.prices err in ")
    assert rec["extra"]["op"] == "capital.prices"
    assert rec["extra"]["epic"] == "AAPL"
    assert "resolution" not in rec["extra"]


def test_slow_span_warns(records, monkeypatch):
    monkeypatch.setattr(settings, "PERF_LOG_SLOW_MS", 0)
    with perf_span("capital.session"):
        pass
    assert [r["level"].name for r in records] == ["WARNING"]


def test_disabled_span_logs_nothing(records, monkeypatch):
    monkeypatch.setattr(settings, "PERF_LOG_ENABLED", False)
    monkeypatch.setattr(settings, "PERF_LOG_SLOW_MS", 0)
    with perf_span("capital.session"):
        pass
    assert records == []
