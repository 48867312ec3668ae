"""Client-side wait for a third-party approval.

After requesting a ticket the submitting client polls
``GET /api/approvals/status`` on a fixed interval until the ticket is
approved or a give-up timeout elapses. Missing tickets, server errors and
transport failures all count as "not approved yet"; only a rejected
credential (401/403) ends the loop early, as a ``denied`` outcome. The
loop runs as one asyncio task so the owner (a UI screen, a CLI command)
can cancel it when it goes away; cancellation leaves nothing scheduled
behind.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx
import structlog

APPROVAL_POLL_INTERVAL_SECONDS = float(os.getenv("APPROVAL_POLL_INTERVAL_SECONDS", "5"))
APPROVAL_POLL_TIMEOUT_SECONDS = float(os.getenv("APPROVAL_POLL_TIMEOUT_SECONDS", "600"))
STATUS_PATH = "/api/approvals/status"

logger = structlog.get_logger(__name__)


class PollOutcome(StrEnum):
    APPROVED = "approved"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    DENIED = "denied"
    FAILED = "failed"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    attempts: int
    ticket: dict[str, Any] | None = None
    status_code: int | None = None


class _AccessDenied(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"approval status denied: {status_code}")
        self.status_code = status_code


class ApprovalStatusPoller:
    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        work_item_id: str,
        site_id: str,
        interval_seconds: float = APPROVAL_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = APPROVAL_POLL_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._base_url = base_url
        self._headers = {"Authorization": f"Bearer {token}"}
        self._params = {"workItemId": work_item_id, "siteId": site_id}
        self._interval_seconds = interval_seconds
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._task: asyncio.Task[PollResult] | None = None
        self._attempts = 0
        self._last_ticket: dict[str, Any] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[PollResult]:
        if self._task is not None:
            raise RuntimeError("poller already started")
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def wait(self) -> PollResult:
        if self._task is None:
            raise RuntimeError("poller not started")
        return await self._task

    async def cancel(self) -> PollResult:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if task is None or task.cancelled():
            return PollResult(PollOutcome.CANCELLED, self._attempts, self._last_ticket)
        error = task.exception()
        if error is not None:
            logger.warning("approval_poll_failed", attempts=self._attempts, error=str(error))
            return PollResult(PollOutcome.FAILED, self._attempts, self._last_ticket)
        return task.result()

    async def _fetch(self, client: httpx.AsyncClient) -> dict[str, Any] | None:
        try:
            response = await client.get(STATUS_PATH, params=self._params)
        except httpx.TransportError as exc:
            logger.warning("approval_poll_transport_error", error=str(exc))
            return None
        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            raise _AccessDenied(response.status_code)
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.is_error:
            logger.warning("approval_poll_http_error", status_code=response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("approval_poll_invalid_body", status_code=response.status_code)
            return None
        return payload if isinstance(payload, dict) else None

    async def _run(self) -> PollResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_seconds
        async with httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            transport=self._transport,
        ) as client:
            while True:
                self._attempts += 1
                try:
                    ticket = await self._fetch(client)
                except _AccessDenied as exc:
                    logger.warning("approval_poll_denied", attempts=self._attempts, status_code=exc.status_code)
                    return PollResult(PollOutcome.DENIED, self._attempts, self._last_ticket, exc.status_code)
                if ticket is not None:
                    self._last_ticket = ticket
                    if ticket.get("approved"):
                        logger.info("approval_poll_approved", attempts=self._attempts, ticket_id=ticket.get("id"))
                        return PollResult(PollOutcome.APPROVED, self._attempts, ticket)
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info("approval_poll_timed_out", attempts=self._attempts)
                    return PollResult(PollOutcome.TIMED_OUT, self._attempts, self._last_ticket)
                await asyncio.sleep(min(self._interval_seconds, remaining))
