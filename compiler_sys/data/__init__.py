from .dependency import DEPENDENCIES, CompilerDependency, get_dependency, get_remote_module_url
from .details import SystemDetails
from .diagnostic import (
    Diagnostic,
    DiagnosticLevel,
    build_error,
    build_warn,
    catch_error,
    has_error,
)
from .messages import (
    ErrorDescriptor,
    TaskFailure,
    TaskMessage,
    TaskResponse,
    TaskSuccess,
    parse_response,
)
from .results import (
    CopyFileResults,
    CopyResults,
    CopyTask,
    FsOperationResult,
    MakeDirectoryResults,
    RemoveDirectoryResults,
    RenameResults,
    Stat,
    UnlinkResults,
    WriteFileResults,
    format_error,
)

__all__ = [
    # Filesystem results
    "Stat",
    "FsOperationResult",
    "MakeDirectoryResults",
    "RemoveDirectoryResults",
    "RenameResults",
    "UnlinkResults",
    "WriteFileResults",
    "CopyFileResults",
    "CopyTask",
    "CopyResults",
    "format_error",
    # Host metadata
    "SystemDetails",
    # Diagnostics
    "Diagnostic",
    "DiagnosticLevel",
    "build_error",
    "build_warn",
    "catch_error",
    "has_error",
    # Worker wire format
    "TaskMessage",
    "TaskSuccess",
    "TaskFailure",
    "TaskResponse",
    "ErrorDescriptor",
    "parse_response",
    # Dependencies
    "CompilerDependency",
    "DEPENDENCIES",
    "get_dependency",
    "get_remote_module_url",
]
