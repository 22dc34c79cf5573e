"""
Bounded worker pool for capability code.

Capabilities are plain blocking callables; running them here keeps the
event loop that accepts connections free.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class WorkerPool:
    """Thread pool with a fixed number of workers, created on first use."""

    def __init__(self, size: int = 10, name: str = "extension-worker"):
        if size < 1:
            raise ValueError("worker pool size must be at least 1")
        self.size = size
        self.name = name
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.size,
                thread_name_prefix=self.name
            )
            logger.debug(f"Worker pool started (size: {self.size})")
        return self._executor

    async def run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a blocking callable on the pool and wait for its result.

        Exceptions raised by the callable propagate to the awaiting caller.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            functools.partial(func, *args, **kwargs)
        )

    def shutdown(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None
            logger.debug("Worker pool stopped")
