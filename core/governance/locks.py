"""
Per-workspace mutex for governance write paths.

submit, decide, decide_component and the per-workspace part of the expiry
sweep run under the workspace's lock so a budget reservation and the
proposal transition it pays for are one unit. Different workspaces never
contend. The lock is process-local; across processes the conditional
UPDATEs in the ledger and registry are what keep state consistent.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager

from core.governance.constants import LOCK_TIMEOUT_SECONDS
from core.governance.errors import LockTimeout

_registry_lock = threading.Lock()
_workspace_locks: dict[int, threading.Lock] = {}


def _lock_for(workspace_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _workspace_locks.get(workspace_id)
        if lock is None:
            lock = threading.Lock()
            _workspace_locks[workspace_id] = lock
        return lock


@contextmanager
def workspace_lock(workspace_id: int, timeout: float | None = None):
    """Hold the workspace's lock for the duration of the block.

    Raises:
        LockTimeout: the lock was not acquired within *timeout* seconds.
    """
    if timeout is None:
        timeout = LOCK_TIMEOUT_SECONDS
    lock = _lock_for(workspace_id)
    if not lock.acquire(timeout=timeout):
        raise LockTimeout(
            f'Workspace {workspace_id} is busy; retry the request',
        )
    try:
        yield
    finally:
        lock.release()
