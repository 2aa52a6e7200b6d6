"""Process records and reconciliation against the OS process table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from pydantic import Field

from nvmcp.types import LaunchSpec, StoredModel, utcnow


class ProcessStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"
    STOPPED = "stopped"


class ProcessRecord(StoredModel):
    """Last-known state of one start attempt, keyed by ``id`` in running.json."""

    id: str
    name: str
    source: str
    pid: int | None = None
    command: LaunchSpec
    status: ProcessStatus = ProcessStatus.STARTING
    started: datetime = Field(default_factory=utcnow)
    log_file: str | None = None
    tag: str | None = None
    # psutil create_time, used to tell our process from a recycled pid
    create_time: float | None = None


class ProcessView(StoredModel):
    """A live record as reported by ``ps``."""

    record: ProcessRecord
    uptime: float

    @property
    def id(self) -> str:
        return self.record.id


LivenessProbe = Callable[[ProcessRecord], bool]


@dataclass
class ReconcileResult:
    live: dict[str, ProcessRecord] = field(default_factory=dict)
    pruned: list[ProcessRecord] = field(default_factory=list)


def reconcile(
    records: dict[str, ProcessRecord],
    is_alive: LivenessProbe,
    now: datetime,
    start_timeout: float,
) -> ReconcileResult:
    """Split persisted records into live and pruned. Pure: no I/O of its own.

    A record with a pid is live iff the probe says so and its status is not
    terminal. A pid-less ``starting`` record survives only within
    ``start_timeout`` seconds of its start.
    """
    result = ReconcileResult()
    for process_id, record in records.items():
        if record.status in (ProcessStatus.ERROR, ProcessStatus.STOPPED):
            result.pruned.append(record)
        elif record.pid is None:
            age = (now - record.started).total_seconds()
            if record.status == ProcessStatus.STARTING and age <= start_timeout:
                result.live[process_id] = record
            else:
                result.pruned.append(record)
        elif is_alive(record):
            result.live[process_id] = record
        else:
            result.pruned.append(record)
    return result
