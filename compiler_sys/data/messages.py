"""Wire format of the worker task protocol.

Messages cross the worker boundary as JSON text, so ``args`` and ``value`` must be
JSON-serializable.
"""

from typing import Any, List, Literal, Optional, Union

from pydantic import Field

from .utils import BaseModelWithDocstrings, NonEmptyString


class TaskMessage(BaseModelWithDocstrings):
    """A request to run one named function inside a worker."""

    task_id: int
    """Identifier assigned by the controller; echoed back in the response."""
    function_name: NonEmptyString
    """Name of the worker function to invoke."""
    args: List[Any] = Field(default_factory=list)
    """Positional arguments, in order."""


class ErrorDescriptor(BaseModelWithDocstrings):
    message: str
    stack: Optional[str] = None


class TaskSuccess(BaseModelWithDocstrings):
    task_id: int
    ok: Literal[True] = True
    value: Any = None


class TaskFailure(BaseModelWithDocstrings):
    task_id: int
    ok: Literal[False] = False
    error: ErrorDescriptor


TaskResponse = Union[TaskSuccess, TaskFailure]
"""Exactly one response is produced per task message."""


def parse_response(payload: dict) -> TaskResponse:
    if payload.get("ok"):
        return TaskSuccess.model_validate(payload)
    return TaskFailure.model_validate(payload)
