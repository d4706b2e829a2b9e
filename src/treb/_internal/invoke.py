"""Call sync or async callables uniformly.

Controller actions, ``init`` hooks, error handlers and lifecycle hooks
can all be ``def`` or ``async def``; the check lives here once::

    result = await invoke(controller.init)
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func* and await the result if it's awaitable."""
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
