"""Process supervision — local OS processes tracked across invocations.

- ProcessRecord / reconcile(): persisted state and the pure liveness filter
- ProcessRegistry: ``running.json`` plus the psutil liveness probe
- ProcessSupervisor: spawn, stop, list; emits lifecycle events
"""

from nvmcp.processes.record import (
    ProcessRecord,
    ProcessStatus,
    ProcessView,
    ReconcileResult,
    reconcile,
)
from nvmcp.processes.registry import ProcessRegistry, psutil_probe
from nvmcp.processes.supervisor import ProcessSupervisor

__all__ = [
    "ProcessRecord",
    "ProcessRegistry",
    "ProcessStatus",
    "ProcessSupervisor",
    "ProcessView",
    "ReconcileResult",
    "psutil_probe",
    "reconcile",
]
