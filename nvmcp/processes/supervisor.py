"""ProcessSupervisor — spawns, tracks and terminates MCP processes.

The tool is not resident, so the supervisor's view is re-derived on every
read from (running.json, the live OS process table). Children run in their
own session and outlive the invocation that started them; the exit watcher
only observes exits that happen while this invocation is still alive.

State machine:

    starting ──spawned──▶ running ──exit 0 / requested──▶ stopped
        │                    └──────non-zero exit───────▶ error
        └──────spawn failure──────────────────────────────▶ error
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

import psutil

from nvmcp.config import NvmcpSettings, settings as default_settings
from nvmcp.events.bus import EventBus
from nvmcp.exceptions import NvmcpError, ProcessError
from nvmcp.processes.record import (
    LivenessProbe,
    ProcessRecord,
    ProcessStatus,
    ProcessView,
    ReconcileResult,
    reconcile,
)
from nvmcp.processes.registry import ProcessRegistry, psutil_probe, same_process
from nvmcp.sources.descriptor import classify
from nvmcp.sources.resolver import SourceResolver
from nvmcp.types import LaunchSpec, ProcessId, new_process_id, utcnow
from nvmcp.validation import validate_process_id

_logger = logging.getLogger(__name__)

_EVENT_SOURCE = "process_supervisor"
_EXPECTED_SIGNALS = frozenset({signal.SIGTERM, signal.SIGINT})


def _signal_process(proc: psutil.Process, sig: int) -> None:
    """Signal the child's whole process group when it leads one."""
    if hasattr(os, "killpg"):
        try:
            if os.getpgid(proc.pid) == proc.pid:
                os.killpg(proc.pid, sig)
                return
        except (ProcessLookupError, PermissionError):
            pass
    proc.send_signal(sig)


class ProcessSupervisor:
    def __init__(
        self,
        registry: ProcessRegistry,
        resolver: SourceResolver,
        event_bus: EventBus,
        config: NvmcpSettings | None = None,
        probe: LivenessProbe = psutil_probe,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._bus = event_bus
        self._config = config or default_settings
        self._probe = probe
        self._clock = clock
        self._children: dict[ProcessId, subprocess.Popen] = {}
        self._watchers: dict[ProcessId, asyncio.Task] = {}
        self._fallbacks: dict[ProcessId, asyncio.Task] = {}
        self._stop_requested: set[ProcessId] = set()
        self._spawned: set[ProcessId] = set()

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    # ── Start ─────────────────────────────────────────────────────

    async def _unique_id(self, name: str) -> ProcessId:
        existing = await self._registry.load()
        process_id = new_process_id(name)
        while process_id in existing or process_id in self._children:
            await asyncio.sleep(0.001)
            process_id = new_process_id(name)
        return process_id

    async def start(
        self,
        name: str,
        source: str,
        env: dict[str, str] | None = None,
        tag: str | None = None,
    ) -> ProcessId:
        """Resolve ``source`` and spawn it. Every call creates a new process.

        Any failure raises an NvmcpError and leaves no record behind.
        """
        try:
            spec = await self._resolver.resolve(classify(source))
        except OSError as e:
            raise ProcessError(f"Failed to prepare {name}: {e}", {"source": source}) from e
        proc_env = {**os.environ, **(env or {})}
        process_id = await self._unique_id(name)
        log_path = self._config.logs_dir / f"{process_id}.log"

        record = ProcessRecord(
            id=process_id,
            name=name,
            source=source,
            command=spec,
            status=ProcessStatus.STARTING,
            started=self._clock(),
            log_file=str(log_path),
            tag=tag,
        )
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            await self._registry.put(record)
            await self._bus.emit("process.starting", {
                "id": process_id,
                "name": name,
                "command": " ".join(spec.argv()),
            }, source=_EVENT_SOURCE)
            child = self._spawn(spec, proc_env, log_path)
        except (NvmcpError, OSError, ValueError, subprocess.SubprocessError) as e:
            record.status = ProcessStatus.ERROR
            await self._discard(record, e)
            if isinstance(e, NvmcpError):
                raise
            raise ProcessError(
                f"Failed to start {name}: {e}",
                {"processId": process_id, "command": spec.argv()},
            ) from e

        record.pid = child.pid
        record.status = ProcessStatus.RUNNING
        try:
            record.create_time = psutil.Process(child.pid).create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            record.create_time = None

        self._children[process_id] = child
        self._spawned.add(process_id)
        self._watchers[process_id] = asyncio.create_task(self._watch_exit(record, child))
        try:
            await self._registry.put(record)
        except (NvmcpError, OSError) as e:
            # The child is running and watched; only the persisted pid is stale.
            _logger.warning("Could not record pid of %s: %s", process_id, e)

        _logger.info("Started %s (id=%s pid=%s)", name, process_id, child.pid)
        await self._bus.emit("process.running", {
            "id": process_id,
            "name": name,
            "pid": child.pid,
        }, source=_EVENT_SOURCE)
        return process_id

    @staticmethod
    def _spawn(spec: LaunchSpec, env: dict[str, str], log_path: Path) -> subprocess.Popen:
        """Spawn in a new session with stdin on a pipe nobody writes to.

        The child holds the pipe's write end itself, so reading stdin blocks
        instead of hitting EOF once this invocation exits.
        """
        stdin_r, stdin_w = os.pipe()
        try:
            with open(log_path, "ab") as log:
                return subprocess.Popen(
                    spec.argv(),
                    stdin=stdin_r,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    cwd=spec.working_dir,
                    env=env,
                    pass_fds=(stdin_w,),
                    start_new_session=True,
                )
        finally:
            os.close(stdin_r)
            os.close(stdin_w)

    async def _discard(self, record: ProcessRecord, error: Exception) -> None:
        """Drop a provisional record after a failed start."""
        try:
            await self._registry.remove(record.id)
        except (NvmcpError, OSError) as e:
            _logger.warning("Could not remove record %s: %s", record.id, e)
        await self._bus.emit("process.error", {
            "id": record.id,
            "name": record.name,
            "error": str(error)[:300],
        }, source=_EVENT_SOURCE)

    async def _watch_exit(self, record: ProcessRecord, child: subprocess.Popen) -> None:
        """Poll our own child until it exits, then settle its record."""
        interval = self._config.poll_interval_s
        while child.poll() is None:
            await asyncio.sleep(interval)

        code = child.returncode
        self._children.pop(record.id, None)

        requested = record.id in self._stop_requested
        if code == 0 or requested or (code < 0 and -code in _EXPECTED_SIGNALS):
            record.status = ProcessStatus.STOPPED
            topic = "process.stopped"
        else:
            record.status = ProcessStatus.ERROR
            topic = "process.error"
            _logger.warning("%s exited with code %s (see %s)", record.name, code, record.log_file)

        await self._registry.remove(record.id)
        await self._bus.emit(topic, {
            "id": record.id,
            "name": record.name,
            "pid": record.pid,
            "exit_code": code,
        }, source=_EVENT_SOURCE)

    # ── Stop ──────────────────────────────────────────────────────

    async def stop(self, process_id: ProcessId) -> ProcessRecord:
        """SIGTERM now, SIGKILL after the kill timeout unless it exits first."""
        validate_process_id(process_id)
        live = (await self.reconcile()).live
        record = live.get(process_id)
        if record is None:
            raise ProcessError(f"Process {process_id} not found", {"processId": process_id})

        self._stop_requested.add(process_id)
        await self._bus.emit("process.stopping", {
            "id": process_id,
            "name": record.name,
            "pid": record.pid,
        }, source=_EVENT_SOURCE)

        if record.pid is None:
            await self._settle_stopped(record)
            return record

        try:
            proc = psutil.Process(record.pid)
            if not same_process(proc, record.create_time):
                raise psutil.NoSuchProcess(record.pid)
            _signal_process(proc, signal.SIGTERM)
        except psutil.NoSuchProcess:
            await self._settle_stopped(record)
            return record
        except psutil.AccessDenied as e:
            raise ProcessError(
                f"Permission denied stopping {process_id}", {"processId": process_id}
            ) from e

        self._fallbacks[process_id] = asyncio.create_task(self._kill_fallback(record, proc))
        return record

    async def _kill_fallback(self, record: ProcessRecord, proc: psutil.Process) -> None:
        deadline = time.monotonic() + self._config.kill_timeout_s
        interval = self._config.poll_interval_s
        while time.monotonic() < deadline:
            if not self._probe(record):
                await self._settle_stopped(record)
                return
            await asyncio.sleep(interval)

        if self._probe(record) and same_process(proc, record.create_time):
            try:
                _signal_process(proc, signal.SIGKILL)
            except psutil.NoSuchProcess:
                pass
            else:
                _logger.warning("%s did not stop gracefully, killed", record.id)
                await self._bus.emit("process.killed", {
                    "id": record.id,
                    "name": record.name,
                    "pid": record.pid,
                }, source=_EVENT_SOURCE)
        await self._settle_stopped(record)

    async def _settle_stopped(self, record: ProcessRecord) -> None:
        if record.status == ProcessStatus.STOPPED:
            return
        record.status = ProcessStatus.STOPPED
        await self._registry.remove(record.id)
        # Our own child: let the exit watcher reap it and emit.
        if record.id in self._spawned:
            return
        await self._bus.emit("process.stopped", {
            "id": record.id,
            "name": record.name,
            "pid": record.pid,
        }, source=_EVENT_SOURCE)

    async def stop_all(self) -> int:
        """Stop every live record. Returns how many were signalled."""
        count = 0
        for process_id in list((await self.reconcile()).live):
            try:
                await self.stop(process_id)
                count += 1
            except ProcessError as e:
                _logger.warning("Could not stop %s: %s", process_id, e)
        return count

    async def drain(self) -> None:
        """Wait for armed SIGKILL fallbacks so a short-lived CLI doesn't drop them."""
        while self._fallbacks:
            tasks = list(self._fallbacks.values())
            self._fallbacks.clear()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait(self) -> None:
        """Block until every child spawned by this invocation has exited."""
        while self._watchers:
            tasks = list(self._watchers.values())
            self._watchers.clear()
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Query ─────────────────────────────────────────────────────

    async def reconcile(self) -> ReconcileResult:
        """Prune dead records from running.json and return the live ones."""
        records = await self._registry.load()
        result = reconcile(records, self._probe, self._clock(), self._config.start_timeout_s)
        if result.pruned:
            _logger.debug("Pruning %d dead process record(s)", len(result.pruned))
            await self._registry.remove(*(r.id for r in result.pruned))
        return result

    async def list(self) -> list[ProcessView]:
        now = self._clock()
        live = (await self.reconcile()).live
        return [
            ProcessView(record=r, uptime=max(0.0, (now - r.started).total_seconds()))
            for r in sorted(live.values(), key=lambda r: r.started)
        ]

    async def get(self, process_id: ProcessId) -> ProcessRecord | None:
        return (await self.reconcile()).live.get(process_id)
