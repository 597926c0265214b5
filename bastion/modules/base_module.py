"""Base class for long-running Bastion modules."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..utils.logging import get_logger
from ..utils.timeutil import utcnow


class BaseModule(ABC):
    """Start/stop lifecycle with health reporting and a single background task."""

    def __init__(self, name: str):
        self.name = name
        self.running = False
        self.health_status = "initialized"
        self.last_heartbeat: Optional[datetime] = None
        self.logger = get_logger(f"module.{name}")
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> dict:
        """Return ``{"status": str, "details": dict}``."""
        ...

    def heartbeat(self) -> None:
        self.last_heartbeat = utcnow()

    def _spawn(self, coro) -> asyncio.Task:
        self._task = asyncio.create_task(coro, name=f"bastion.{self.name}")
        return self._task

    async def _cancel(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "running": self.running,
            "health_status": self.health_status,
            "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
        }
