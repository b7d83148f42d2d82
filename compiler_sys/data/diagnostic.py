"""Diagnostics fed to the compiler's diagnostic collector."""

import traceback
from enum import Enum
from typing import List, Optional

from .utils import BaseModelWithDocstrings


class DiagnosticLevel(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"


class Diagnostic(BaseModelWithDocstrings):
    """A single problem reported to the compiler core instead of being raised."""

    level: DiagnosticLevel = DiagnosticLevel.ERROR
    type: str = "runtime"
    """Category of the diagnostic, e.g. 'runtime' or 'module_loader'."""
    header: str = "Runtime error"
    message_text: str = ""
    stack: Optional[str] = None


def build_error(
    diagnostics: Optional[List[Diagnostic]], header: str, message_text: str, type: str = "runtime"
) -> Diagnostic:
    """Create an error diagnostic and append it to the collector if one is given."""
    diagnostic = Diagnostic(header=header, message_text=message_text, type=type)
    if diagnostics is not None:
        diagnostics.append(diagnostic)
    return diagnostic


def build_warn(
    diagnostics: Optional[List[Diagnostic]], header: str, message_text: str, type: str = "runtime"
) -> Diagnostic:
    diagnostic = Diagnostic(
        level=DiagnosticLevel.WARN, header=header, message_text=message_text, type=type
    )
    if diagnostics is not None:
        diagnostics.append(diagnostic)
    return diagnostic


def catch_error(
    diagnostics: Optional[List[Diagnostic]], exc: BaseException, header: str = "Runtime error"
) -> Diagnostic:
    """Convert an exception into an error diagnostic."""
    diagnostic = Diagnostic(
        header=header,
        message_text=f"{type(exc).__name__}: {exc}",
        stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )
    if diagnostics is not None:
        diagnostics.append(diagnostic)
    return diagnostic


def has_error(diagnostics: List[Diagnostic]) -> bool:
    return any(d.level == DiagnosticLevel.ERROR for d in diagnostics)
