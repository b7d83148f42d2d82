import asyncio
import os
from pathlib import Path
from typing import Iterator

import pytest

from compiler_sys import CompilerSystem, HostKind, create_system


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop every COMPILER_SYS_* variable so tests see the documented defaults."""
    for name in list(os.environ):
        if name.startswith("COMPILER_SYS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def native_system(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[CompilerSystem]:
    """A native-host system rooted at an isolated temporary directory."""
    monkeypatch.setenv("COMPILER_SYS_TMP_PREFIX", "cs-test-")
    system = create_system(HostKind.NATIVE, cwd=str(tmp_path), register_atexit=False)
    yield system
    if not system.destroyed:
        asyncio.run(system.destroy())


@pytest.fixture
def memory_system() -> Iterator[CompilerSystem]:
    """A fetch-host system whose filesystem lives in memory."""
    system = create_system(HostKind.FETCH, register_atexit=False)
    yield system
    if not system.destroyed:
        asyncio.run(system.destroy())
