"""Tests for the process supervisor, using real short-lived Python children."""

import asyncio
import os
import sys
from pathlib import Path

import psutil
import pytest

from nvmcp.exceptions import ProcessError, ValidationError
from nvmcp.processes import ProcessRecord, ProcessStatus
from nvmcp.types import LaunchSpec


def _python(code: str) -> LaunchSpec:
    return LaunchSpec(command=sys.executable, args=["-c", code])


async def _wait_for(path: Path, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not path.exists():
        assert asyncio.get_running_loop().time() < deadline, f"{path} never appeared"
        await asyncio.sleep(0.02)


def _topics(event_bus, pattern="process.*"):
    return [e.topic for e in reversed(event_bus.history(pattern, limit=100))]


# ── start ───────────────────────────────────────────────────────

async def test_start_persists_running_record(supervisor, event_bus):
    process_id = await supervisor.start("sleeper", "npm:sleeper", {"NVMCP_TEST": "1"}, tag="dev")

    assert process_id.startswith("sleeper-")
    record = await supervisor.registry.get(process_id)
    assert record.status == ProcessStatus.RUNNING
    assert record.tag == "dev"
    assert psutil.pid_exists(record.pid)
    assert Path(record.log_file).name == f"{process_id}.log"
    assert _topics(event_bus) == ["process.starting", "process.running"]


async def test_child_runs_in_own_session_with_merged_env(config, resolver, supervisor):
    out = config.home_dir / "env.txt"
    resolver.specs["envdump"] = _python(
        "import os, pathlib; "
        f"pathlib.Path({str(out)!r}).write_text(os.environ['TAG_VAR'] + ':' + str(os.getsid(0)))"
    )
    process_id = await supervisor.start("envdump", "npm:envdump", {"TAG_VAR": "from-tag"})
    await supervisor.wait()

    value, sid = out.read_text().split(":")
    assert value == "from-tag"
    assert int(sid) != os.getsid(0)
    assert await supervisor.registry.get(process_id) is None


async def test_tag_environment_wins_over_ambient(monkeypatch, config, resolver, supervisor):
    monkeypatch.setenv("SHARED_VAR", "ambient")
    out = config.home_dir / "shared.txt"
    resolver.specs["shared"] = _python(
        f"import os, pathlib; pathlib.Path({str(out)!r}).write_text(os.environ['SHARED_VAR'])"
    )
    await supervisor.start("shared", "npm:shared", {"SHARED_VAR": "tag"})
    await supervisor.wait()
    assert out.read_text() == "tag"


async def test_same_mcp_twice_creates_two_processes(supervisor):
    first = await supervisor.start("sleeper", "npm:sleeper")
    second = await supervisor.start("sleeper", "npm:sleeper")

    assert first != second
    views = await supervisor.list()
    assert {v.id for v in views} == {first, second}
    assert len({v.record.pid for v in views}) == 2


async def test_spawn_failure_raises_and_leaves_no_record(config, resolver, supervisor, event_bus):
    resolver.specs["ghost"] = LaunchSpec(command=str(config.home_dir / "no-such-binary"))

    with pytest.raises(ProcessError, match="Failed to start ghost"):
        await supervisor.start("ghost", "npm:ghost")

    assert await supervisor.registry.load() == {}
    assert _topics(event_bus) == ["process.starting", "process.error"]


async def test_resolution_failure_creates_no_record(supervisor):
    from nvmcp.exceptions import ResolutionError

    with pytest.raises(ResolutionError):
        await supervisor.start("broken", "npm:broken")
    assert await supervisor.registry.load() == {}


async def test_invalid_environment_value_raises_process_error(supervisor, event_bus):
    with pytest.raises(ProcessError, match="Failed to start alpha"):
        await supervisor.start("alpha", "npm:alpha", {"BAD": "a\x00b"})

    assert await supervisor.registry.load() == {}
    assert _topics(event_bus) == ["process.starting", "process.error"]


async def test_unusable_logs_dir_raises_process_error(config, supervisor):
    config.home_dir.mkdir(parents=True, exist_ok=True)
    config.logs_dir.write_text("not a directory")

    with pytest.raises(ProcessError):
        await supervisor.start("alpha", "npm:alpha")
    assert await supervisor.registry.load() == {}


@pytest.mark.skipif(not Path("/proc/self/fd").exists(), reason="needs /proc")
async def test_child_stdin_blocks_without_parent_holding_pipe(config, resolver, supervisor):
    done = config.home_dir / "stdin-eof"
    resolver.specs["reader"] = _python(
        f"import sys, pathlib; sys.stdin.read(); pathlib.Path({str(done)!r}).write_text('eof')"
    )
    process_id = await supervisor.start("reader", "npm:reader")
    record = await supervisor.registry.get(process_id)

    child_stdin = os.readlink(f"/proc/{record.pid}/fd/0")
    ours = {os.readlink(f"/proc/self/fd/{fd}") for fd in os.listdir("/proc/self/fd")
            if os.path.islink(f"/proc/self/fd/{fd}")}
    await asyncio.sleep(0.5)

    assert child_stdin.startswith("pipe:")
    assert child_stdin not in ours
    assert not done.exists()
    assert [v.id for v in await supervisor.list()] == [process_id]


async def test_output_goes_to_log_file(resolver, supervisor):
    resolver.specs["chatty"] = _python("print('hello from child', flush=True)")
    process_id = await supervisor.start("chatty", "npm:chatty")
    record = await supervisor.registry.get(process_id)
    await supervisor.wait()
    assert "hello from child" in Path(record.log_file).read_text()


# ── exit watcher ────────────────────────────────────────────────

async def test_clean_exit_emits_stopped(resolver, supervisor, event_bus):
    resolver.specs["quick"] = _python("pass")
    process_id = await supervisor.start("quick", "npm:quick")
    await supervisor.wait()

    assert await supervisor.registry.get(process_id) is None
    stopped = event_bus.history("process.stopped")
    assert stopped[0].data["id"] == process_id
    assert stopped[0].data["exit_code"] == 0


async def test_nonzero_exit_emits_error(resolver, supervisor, event_bus):
    resolver.specs["crash"] = _python("import sys; sys.exit(3)")
    process_id = await supervisor.start("crash", "npm:crash")
    await supervisor.wait()

    assert await supervisor.registry.get(process_id) is None
    errors = event_bus.history("process.error")
    assert errors[0].data["exit_code"] == 3


# ── stop ────────────────────────────────────────────────────────

async def test_stop_terminates_and_removes(supervisor, event_bus):
    process_id = await supervisor.start("sleeper", "npm:sleeper")
    record = await supervisor.stop(process_id)
    await supervisor.drain()
    await supervisor.wait()

    assert record.id == process_id
    assert not any(v.id == process_id for v in await supervisor.list())
    assert "process.stopping" in _topics(event_bus)
    assert "process.killed" not in _topics(event_bus)
    assert event_bus.history("process.stopped")[0].data["id"] == process_id


async def test_stop_escalates_to_sigkill(config, resolver, supervisor, event_bus):
    ready = config.home_dir / "ready"
    resolver.specs["stubborn"] = _python(
        "import signal, time, pathlib; "
        "signal.signal(signal.SIGTERM, signal.SIG_IGN); "
        f"pathlib.Path({str(ready)!r}).touch(); "
        "time.sleep(60)"
    )
    process_id = await supervisor.start("stubborn", "npm:stubborn")
    await _wait_for(ready)

    await supervisor.stop(process_id)
    assert any(v.id == process_id for v in await supervisor.list())

    await supervisor.drain()
    await supervisor.wait()

    assert "process.killed" in _topics(event_bus)
    assert not any(v.id == process_id for v in await supervisor.list())


async def test_stop_unknown_id(supervisor):
    with pytest.raises(ProcessError, match="not found"):
        await supervisor.stop("nothing-1700000000000")


async def test_stop_invalid_id_format(supervisor):
    with pytest.raises(ValidationError):
        await supervisor.stop("not a process id")


async def test_stop_all_returns_count(supervisor):
    await supervisor.start("a", "npm:a")
    await supervisor.start("b", "npm:b")

    assert await supervisor.stop_all() == 2
    await supervisor.drain()
    assert await supervisor.list() == []


# ── reconciliation ──────────────────────────────────────────────

async def test_list_prunes_dead_records_and_persists(supervisor):
    me = psutil.Process(os.getpid())
    alive = ProcessRecord(
        id="alive-1", name="alive", source="npm:alive", pid=me.pid,
        command=LaunchSpec(command="node"), status=ProcessStatus.RUNNING,
        create_time=me.create_time(),
    )
    dead = ProcessRecord(
        id="dead-2", name="dead", source="npm:dead", pid=me.pid,
        command=LaunchSpec(command="node"), status=ProcessStatus.RUNNING,
        create_time=1.0,  # pid recycled since this record was written
    )
    await supervisor.registry.put(alive)
    await supervisor.registry.put(dead)
    try:
        views = await supervisor.list()

        assert [v.id for v in views] == ["alive-1"]
        assert views[0].uptime >= 0
        assert set(await supervisor.registry.load()) == {"alive-1"}
    finally:
        # Never let teardown signal the test runner itself.
        await supervisor.registry.remove("alive-1")
