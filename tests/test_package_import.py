import subprocess
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.mark.parametrize(
    "module",
    [
        "compiler_sys",
        "compiler_sys.loader",
        "compiler_sys.loader.loader",
        "compiler_sys.system",
        "compiler_sys.system.compiler_system",
        "compiler_sys.worker",
        "compiler_sys.worker.pool",
    ],
)
def test_import_in_fresh_interpreter(module):
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=REPO_ROOT,
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert result.returncode == 0, result.stderr
