"""ProcessRegistry — ``running.json``, the persisted map id → ProcessRecord.

Shared by every invocation without locking; each mutation re-reads the file
so concurrent writers lose at most the entry they raced on.
"""

from __future__ import annotations

import logging
from pathlib import Path

import psutil
from pydantic import ValidationError as PydanticValidationError

from nvmcp.processes.record import ProcessRecord
from nvmcp.store.documents import read_document, write_document

_logger = logging.getLogger(__name__)

# psutil create_time is rounded differently across platforms
CREATE_TIME_TOLERANCE_S = 1.0


def same_process(proc: psutil.Process, create_time: float | None) -> bool:
    if create_time is None:
        return True
    try:
        return abs(proc.create_time() - create_time) < CREATE_TIME_TOLERANCE_S
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def psutil_probe(record: ProcessRecord) -> bool:
    """Liveness of a record's pid. Zombies and recycled pids count as dead."""
    if record.pid is None:
        return False
    try:
        proc = psutil.Process(record.pid)
        if proc.status() == psutil.STATUS_ZOMBIE:
            return False
        return same_process(proc, record.create_time)
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists but belongs to someone else; still alive.
        return True


class ProcessRegistry:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> dict[str, ProcessRecord]:
        raw = read_document(self._path) or {}
        records: dict[str, ProcessRecord] = {}
        for process_id, data in raw.items():
            try:
                records[process_id] = ProcessRecord.model_validate(data)
            except PydanticValidationError as e:
                _logger.warning("Dropping malformed process record %s: %s", process_id, e)
        return records

    async def save(self, records: dict[str, ProcessRecord]) -> None:
        write_document(self._path, {pid: r.to_document() for pid, r in records.items()})

    async def get(self, process_id: str) -> ProcessRecord | None:
        return (await self.load()).get(process_id)

    async def put(self, record: ProcessRecord) -> None:
        records = await self.load()
        records[record.id] = record
        await self.save(records)

    async def remove(self, *process_ids: str) -> None:
        records = await self.load()
        changed = False
        for process_id in process_ids:
            if records.pop(process_id, None) is not None:
                changed = True
        if changed:
            await self.save(records)
