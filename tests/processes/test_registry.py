"""Tests for running.json persistence and the psutil liveness probe."""

import os
import subprocess
import sys
import time

import orjson
import psutil
import pytest

from nvmcp.exceptions import ConfigError
from nvmcp.processes import ProcessRecord, ProcessRegistry, ProcessStatus, psutil_probe
from nvmcp.types import LaunchSpec

SPEC = LaunchSpec(command="node", args=["x.js"])


def _record(process_id, pid=None, create_time=None):
    return ProcessRecord(
        id=process_id,
        name="x",
        source="npm:x",
        pid=pid,
        command=SPEC,
        status=ProcessStatus.RUNNING,
        create_time=create_time,
    )


@pytest.fixture
def registry(tmp_path):
    return ProcessRegistry(tmp_path / "running.json")


async def test_put_load_remove(registry):
    await registry.put(_record("x-1", 10))
    await registry.put(_record("x-2", 20))
    records = await registry.load()
    assert set(records) == {"x-1", "x-2"}
    assert records["x-1"].pid == 10

    await registry.remove("x-1", "does-not-exist-3")
    assert set(await registry.load()) == {"x-2"}


async def test_file_layout_is_map_of_camel_case_records(registry):
    await registry.put(_record("x-1", 10))
    data = orjson.loads(registry.path.read_bytes())
    assert list(data) == ["x-1"]
    assert data["x-1"]["command"] == {"command": "node", "args": ["x.js"]}
    assert "logFile" not in data["x-1"]  # None fields are omitted
    assert data["x-1"]["status"] == "running"


async def test_malformed_entries_are_dropped(registry):
    registry.path.write_bytes(orjson.dumps({
        "ok-1": _record("ok-1", 1).to_document(),
        "bad-2": {"id": "bad-2"},
    }))
    assert list(await registry.load()) == ["ok-1"]


async def test_malformed_file_raises(registry):
    registry.path.write_text("not json")
    with pytest.raises(ConfigError):
        await registry.load()


def test_probe_current_process_alive():
    assert psutil_probe(_record("me-1", os.getpid()))


def test_probe_recycled_pid_is_dead():
    assert not psutil_probe(_record("me-1", os.getpid(), create_time=1.0))


def test_probe_matching_create_time_alive():
    ct = psutil.Process(os.getpid()).create_time()
    assert psutil_probe(_record("me-1", os.getpid(), create_time=ct))


def test_probe_exited_process_is_dead():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    assert not psutil_probe(_record("gone-1", proc.pid))


def test_probe_zombie_is_dead():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    try:
        # Not reaped yet: the child lingers as a zombie.
        deadline = time.monotonic() + 5
        while psutil.Process(proc.pid).status() != psutil.STATUS_ZOMBIE:
            assert time.monotonic() < deadline
            time.sleep(0.01)
        assert not psutil_probe(_record("z-1", proc.pid))
    finally:
        proc.wait()


def test_probe_without_pid():
    assert not psutil_probe(_record("p-1", None))
