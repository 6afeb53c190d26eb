"""Local executor - runs the action implementation in-process."""

import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable

from pai.contracts.executor import ExecutorPlugin
from pai.core.context import ExecutionContext
from pai.core.manifest import LoadedAction
from pai.exceptions import ExecutionError, PaiError


class LocalExecutor(ExecutorPlugin):
    """Calls execute(input, context) in the current process.

    Coroutine implementations are driven to completion with asyncio.run().
    When the caller is itself inside a running event loop, the coroutine
    runs on a fresh loop in a worker thread and the call blocks until it
    finishes.
    """

    validates_output = True

    def execute(self, action: LoadedAction, input: Any, context: ExecutionContext) -> Any:
        execute = action.get_execute()

        try:
            result = execute(input, context)
            if inspect.isawaitable(result):
                result = _drive(result)
        except PaiError:
            raise
        except Exception as e:
            raise ExecutionError(f"Execution failed: {e}") from e

        return result


def _drive(awaitable: Awaitable) -> Any:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await(awaitable))

    # asyncio.run() refuses to nest inside a running loop
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="pai-async") as pool:
        return pool.submit(asyncio.run, _await(awaitable)).result()


async def _await(awaitable):
    return await awaitable
