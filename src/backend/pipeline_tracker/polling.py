"""
Client-side refresh and reconciliation helpers.

Dashboards are refreshed by polling on a fixed interval plus an explicit
refresh trigger; there is no server push. The kanban board applies status
moves optimistically and falls back to a full reload when the server
rejects a move.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar, Union

from .errors import NotFoundError
from .models import Application, ApplicationStatus
from .workflow import StatusWorkflow, parse_status

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DashboardPoller(Generic[T]):
    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        listener: Callable[[T], None],
        interval_seconds: float = 30.0,
    ) -> None:
        self.fetch = fetch
        self.listener = listener
        self.interval_seconds = interval_seconds
        self.latest: Optional[T] = None
        self.last_error: Optional[BaseException] = None
        self._refresh = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def refresh(self) -> None:
        """Poll now instead of waiting for the rest of the interval."""
        self._refresh.set()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def poll_once(self) -> Optional[T]:
        try:
            snapshot = await self.fetch()
        except Exception as exc:
            self.last_error = exc
            logger.warning("Dashboard poll failed, keeping previous snapshot: %s", exc)
            return None
        self.last_error = None
        self.latest = snapshot
        self.listener(snapshot)
        return snapshot

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            try:
                await asyncio.wait_for(self._refresh.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._refresh.clear()


class OptimisticBoard:
    """
    Local view of the applications on a kanban board.

    ``move`` updates the local copy first, then asks the server. The server
    answer replaces the local copy on success; on failure the whole board is
    reloaded from the server before the error is re-raised.
    """

    def __init__(
        self,
        transition: Callable[[str, ApplicationStatus], Awaitable[Application]],
        fetch_all: Callable[[], Awaitable[Sequence[Application]]],
    ) -> None:
        self.transition = transition
        self.fetch_all = fetch_all
        self.applications: Dict[str, Application] = {}

    @classmethod
    def for_workflow(cls, workflow: StatusWorkflow, owner_id: str, page_size: int = 100) -> "OptimisticBoard":
        async def transition(application_id: str, status: ApplicationStatus) -> Application:
            return await asyncio.to_thread(workflow.set_status, owner_id, application_id, status)

        limit = min(page_size, workflow.config.max_page_size)

        async def fetch_all() -> Sequence[Application]:
            items: List[Application] = []
            page = 1
            while True:
                result = await asyncio.to_thread(
                    workflow.list_applications, owner_id, {"page": page, "limit": limit}
                )
                items.extend(result.items)
                if page >= result.total_pages:
                    return items
                page += 1

        return cls(transition, fetch_all)

    async def load(self) -> None:
        applications = await self.fetch_all()
        self.applications = {application.id: application for application in applications}

    def column(self, status: Union[str, ApplicationStatus]) -> List[Application]:
        target = parse_status(status)
        return [application for application in self.applications.values() if application.status is target]

    async def move(self, application_id: str, status: Union[str, ApplicationStatus]) -> Application:
        target = parse_status(status)
        current = self.applications.get(application_id)
        if current is None:
            raise NotFoundError()
        self.applications[application_id] = dataclasses.replace(current, status=target)
        try:
            updated = await self.transition(application_id, target)
        except Exception:
            logger.warning("Moving %s to %s failed; reloading board from server", application_id, target.value)
            await self.load()
            raise
        self.applications[application_id] = updated
        return updated
