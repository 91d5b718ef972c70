"""
Process triggers.

Small adapters that start process instances: on demand, after a delay, or
periodically on the running event loop.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


class ManualTrigger:
    """Awaitable callable bound to one process name."""

    def __init__(self, engine, process_name: str):
        self.engine = engine
        self.process_name = process_name

    async def __call__(self, input_data: Any = None) -> Any:
        return await self.engine.execute(self.process_name, input_data)

    def __repr__(self):
        return f"<ManualTrigger process={self.process_name!r}>"


class IntervalTrigger:
    """
    Runs a process every ``interval`` seconds and/or once after ``delay``.

    Input for each run comes from ``input_factory`` (sync or async) when
    given, otherwise an empty dict. A failed run is logged and does not stop
    the schedule.
    """

    def __init__(self, engine, process_name: str, interval: Optional[float] = None,
                 input_factory: Optional[Callable[[], Any]] = None,
                 delay: Optional[float] = None):
        if not interval and not delay:
            raise ValueError("IntervalTrigger needs an interval or a delay")
        self.engine = engine
        self.process_name = process_name
        self.interval = interval
        self.delay = delay
        self.input_factory = input_factory
        self.run_count = 0
        self.failure_count = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Schedule the trigger on the running event loop."""
        if self.running:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._loop())
        if self.interval:
            log.info(f"Started interval trigger (interval={self.interval}s) -> process '{self.process_name}'")
        else:
            log.info(f"Started delay trigger (delay={self.delay}s) -> process '{self.process_name}'")
        return self._task

    async def stop(self):
        """Cancel pending runs and wait for the schedule to wind down."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        log.info(f"Stopped trigger for process '{self.process_name}'")

    async def fire(self) -> Any:
        """Run the process once; errors are logged, not raised."""
        self.run_count += 1
        try:
            input_data = await self._build_input()
            return await self.engine.execute(self.process_name, input_data)
        except Exception as e:
            self.failure_count += 1
            log.error(f"Timer trigger for '{self.process_name}' failed: {str(e)}")
            return None

    async def _loop(self):
        if self.delay:
            await asyncio.sleep(self.delay)
            await self.fire()
        if not self.interval:
            return
        while True:
            await asyncio.sleep(self.interval)
            await self.fire()

    async def _build_input(self) -> Any:
        if self.input_factory is None:
            return {}
        result = self.input_factory()
        if inspect.isawaitable(result):
            result = await result
        return result
