"""Identidad estable de un proceso worker."""

from __future__ import annotations

import os
import re
import socket
from typing import Optional

_UNSAFE = re.compile(r"[^A-Za-z0-9_.\-]+")


def _clean(value: str) -> str:
    return _UNSAFE.sub("-", value.strip()) or "unknown"


def derive_worker_id(
    hostname: Optional[str] = None,
    pid: Optional[int] = None,
    supervisor: Optional[str] = None,
) -> str:
    """worker_<host>_<pid>, o worker_<supervisor>_<host>_<pid> bajo un pool.

    Dos procesos del mismo host nunca colisionan (PID distinto) y un worker
    reiniciado obtiene una identidad nueva; la vieja expira por TTL/staleness.
    """
    host = _clean(hostname if hostname is not None else (socket.gethostname() or "unknown"))
    pid = os.getpid() if pid is None else int(pid)
    if supervisor:
        return f"worker_{_clean(supervisor)}_{host}_{pid}"
    return f"worker_{host}_{pid}"
