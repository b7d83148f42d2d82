"""Message framing shared by the controller and both worker backends.

Every frame is a JSON object with a ``cmd`` field. Task payloads and responses follow the
``TaskMessage``/``TaskResponse`` models.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import traceback
from enum import Enum
from typing import Any, Dict, List

from pydantic import ValidationError

from compiler_sys.data import ErrorDescriptor, TaskFailure, TaskMessage, TaskSuccess

from .context import WorkerContext


class WorkerCommand(Enum):
    RUN_TASK = "run_task"
    SHUTDOWN = "shutdown"


class WorkerResponse(Enum):
    READY = "ready"
    RESULT = "result"
    ERROR = "error"


def encode_frame(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))


def decode_frame(raw: str) -> Dict[str, Any]:
    return json.loads(raw)


def encode_task(task_id: int, function_name: str, args: List[Any]) -> str:
    """Serialize a task request.

    Raises
    ------
    TypeError
        If an argument is not JSON-serializable.
    """
    task = TaskMessage(task_id=task_id, function_name=function_name, args=list(args))
    try:
        return encode_frame({"cmd": WorkerCommand.RUN_TASK.value, "task": task.model_dump()})
    except (TypeError, ValueError) as e:
        raise TypeError(f"Arguments of '{function_name}' are not JSON-serializable: {e}") from e


def _failure(task_id: int, exc: BaseException) -> Dict[str, Any]:
    return TaskFailure(
        task_id=task_id,
        error=ErrorDescriptor(
            message=f"{type(exc).__name__}: {exc}",
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        ),
    ).model_dump()


def run_task(context: WorkerContext, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Execute one task inside a worker and build its response.

    Any ``Exception`` raised by lookup or by the function fails the task. Coroutine
    functions are run to completion on a private event loop.
    """
    task_id = payload.get("task_id", -1) if isinstance(payload, dict) else -1
    try:
        task = TaskMessage.model_validate(payload)
        value = context.resolve(task.function_name)(*task.args)
        if inspect.isawaitable(value):
            value = asyncio.run(_await(value))
        response = TaskSuccess(task_id=task.task_id, value=value).model_dump()
        json.dumps(response)
        return response
    except ValidationError as e:
        return _failure(task_id, e)
    except Exception as e:
        return _failure(task_id, e)


async def _await(awaitable: Any) -> Any:
    return await awaitable
