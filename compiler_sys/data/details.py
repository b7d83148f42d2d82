from .utils import BaseModelWithDocstrings


class SystemDetails(BaseModelWithDocstrings):
    """Host metadata. Every numeric field is best-effort and zero when unknown."""

    platform: str
    """Operating system name, e.g. 'linux', 'darwin', 'windows'."""
    cpus: int = 0
    """Number of logical CPUs."""
    cpu_model: str = ""
    release: str = ""
    """Operating system release string."""
    totalmem: int = 0
    """Total physical memory in bytes."""
    freemem: int = 0
    """Available physical memory in bytes at the time the details were collected."""
    runtime: str
    """Interpreter implementation name, e.g. 'cpython'."""
    runtime_version: str
    """Interpreter version string."""
