"""Environment variable accessors.

Every configuration knob of compiler_sys is read through one of these getters so that
tests can override behavior with ``monkeypatch.setenv``.
"""

from __future__ import annotations

import os
from typing import Optional


def get_compiler_sys_host_kind() -> Optional[str]:
    """Host kind override (``native``, ``isolate``, ``background_thread`` or ``fetch``).
    Returns None when the host should be detected."""
    value = os.environ.get("COMPILER_SYS_HOST_KIND", "").strip().lower()
    return value or None


def get_compiler_sys_log_level() -> str:
    return os.environ.get("COMPILER_SYS_LOG_LEVEL", "WARNING").upper()


def get_compiler_sys_max_workers() -> int:
    """Default worker ceiling. Falls back to the number of CPUs minus one (at least 1)."""
    value = os.environ.get("COMPILER_SYS_MAX_WORKERS")
    if value:
        try:
            return max(1, int(value))
        except ValueError:
            pass
    return max(1, (os.cpu_count() or 2) - 1)


def get_compiler_sys_worker_start_method() -> str:
    """Multiprocessing start method used by process workers. Default is ``spawn``."""
    return os.environ.get("COMPILER_SYS_WORKER_START_METHOD", "spawn")


def get_compiler_sys_remote_base_url() -> str:
    """Base URL that remote module URLs are derived from."""
    return os.environ.get("COMPILER_SYS_REMOTE_BASE_URL", "https://cdn.jsdelivr.net/npm").rstrip(
        "/"
    )


def get_compiler_sys_fetch_timeout() -> float:
    """Timeout in seconds for network fetches made by the module loader."""
    try:
        return float(os.environ.get("COMPILER_SYS_FETCH_TIMEOUT", "30"))
    except ValueError:
        return 30.0


def get_compiler_sys_tmp_prefix() -> str:
    return os.environ.get("COMPILER_SYS_TMP_PREFIX", "compiler-sys-")


def get_compiler_sys_worker_module() -> Optional[str]:
    """Module whose attributes implement the worker functions (``transpile``,
    ``optimize_css``, ...). Returns None when no module is configured."""
    value = os.environ.get("COMPILER_SYS_WORKER_MODULE", "").strip()
    return value or None
