"""Tests for the pure reconciliation function."""

from datetime import timedelta

from nvmcp.processes import ProcessRecord, ProcessStatus, reconcile
from nvmcp.types import LaunchSpec, utcnow

SPEC = LaunchSpec(command="node", args=["x.js"])


def _record(process_id, pid, status=ProcessStatus.RUNNING, age=0.0):
    return ProcessRecord(
        id=process_id,
        name=process_id.rsplit("-", 1)[0],
        source="npm:x",
        pid=pid,
        command=SPEC,
        status=status,
        started=utcnow() - timedelta(seconds=age),
    )


def test_alive_kept_dead_pruned():
    records = {"a-1": _record("a-1", 111), "b-2": _record("b-2", 222)}
    result = reconcile(records, lambda r: r.pid == 111, utcnow(), 30.0)

    assert list(result.live) == ["a-1"]
    assert [r.id for r in result.pruned] == ["b-2"]


def test_pidless_starting_kept_within_timeout():
    records = {
        "fresh-1": _record("fresh-1", None, ProcessStatus.STARTING, age=5),
        "stale-2": _record("stale-2", None, ProcessStatus.STARTING, age=60),
    }
    result = reconcile(records, lambda r: False, utcnow(), 30.0)

    assert list(result.live) == ["fresh-1"]
    assert [r.id for r in result.pruned] == ["stale-2"]


def test_terminal_statuses_pruned_even_if_pid_alive():
    records = {
        "s-1": _record("s-1", 1, ProcessStatus.STOPPED),
        "e-2": _record("e-2", 2, ProcessStatus.ERROR),
    }
    result = reconcile(records, lambda r: True, utcnow(), 30.0)
    assert result.live == {}
    assert len(result.pruned) == 2


def test_probe_not_called_for_pidless_records():
    seen = []

    def probe(record):
        seen.append(record.id)
        return True

    reconcile({"x-1": _record("x-1", None, ProcessStatus.STARTING)}, probe, utcnow(), 30.0)
    assert seen == []


def test_empty_registry():
    result = reconcile({}, lambda r: True, utcnow(), 30.0)
    assert result.live == {}
    assert result.pruned == []
