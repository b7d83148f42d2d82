"""Table of dependencies the module loader can fetch remotely."""

from typing import List, Optional

from pydantic import Field

from .utils import BaseModelWithDocstrings, NonEmptyString


class CompilerDependency(BaseModelWithDocstrings):
    name: NonEmptyString
    """Module id, also used as the package name in the remote URL."""
    version: NonEmptyString
    main: NonEmptyString
    """Path of the loadable bundle inside the package."""
    resources: List[str] = Field(default_factory=list)
    """Extra files of the package that the compiler may read remotely."""


DEPENDENCIES: List[CompilerDependency] = [
    CompilerDependency(
        name="typescript",
        version="5.4.5",
        main="lib/typescript.py",
        resources=["lib/lib.dom.d.ts", "lib/lib.es5.d.ts", "lib/lib.es2015.d.ts", "package.json"],
    ),
    CompilerDependency(name="rollup", version="4.18.0", main="dist/rollup.py"),
    CompilerDependency(name="terser", version="5.31.0", main="dist/terser.py"),
]


def get_dependency(name: str) -> Optional[CompilerDependency]:
    for dep in DEPENDENCIES:
        if dep.name == name:
            return dep
    return None


def get_remote_module_url(base_url: str, module_id: str, version: str, path: str) -> str:
    """Build the URL of a file inside a remotely hosted package.

    Examples
    --------
    >>> get_remote_module_url("https://cdn.example.com/npm", "typescript", "5.4.5", "lib/typescript.py")
    'https://cdn.example.com/npm/typescript@5.4.5/lib/typescript.py'
    """
    return f"{base_url.rstrip('/')}/{module_id}@{version}/{path.lstrip('/')}"
