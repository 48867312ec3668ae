from __future__ import annotations

import asyncio

import httpx
import pytest

from app.client.approval_poller import STATUS_PATH, ApprovalStatusPoller, PollOutcome


def _poller(transport: httpx.MockTransport, **overrides: float) -> ApprovalStatusPoller:
    return ApprovalStatusPoller(
        base_url="http://inspection.test",
        token="token-abc",
        work_item_id="work-1",
        site_id="site-1",
        interval_seconds=overrides.get("interval_seconds", 0.01),
        timeout_seconds=overrides.get("timeout_seconds", 5.0),
        transport=transport,
    )


def test_poller_stops_once_ticket_is_approved() -> None:
    responses = [
        httpx.Response(404, json={"detail": "approval ticket not found"}),
        httpx.Response(200, json={"id": "ticket-1", "approved": False}),
        httpx.Response(200, json={"id": "ticket-1", "approved": True}),
    ]
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses[min(len(seen), len(responses)) - 1]

    async def _run() -> object:
        poller = _poller(httpx.MockTransport(_handler))
        poller.start()
        return await poller.wait()

    result = asyncio.run(_run())

    assert result.outcome == PollOutcome.APPROVED  # type: ignore[attr-defined]
    assert result.attempts == 3  # type: ignore[attr-defined]
    assert result.ticket == {"id": "ticket-1", "approved": True}  # type: ignore[attr-defined]
    assert seen[0].url.path == STATUS_PATH
    assert seen[0].url.params["workItemId"] == "work-1"
    assert seen[0].url.params["siteId"] == "site-1"
    assert seen[0].headers["Authorization"] == "Bearer token-abc"


def test_poller_times_out_while_ticket_stays_pending() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "ticket-1", "approved": False})

    async def _run() -> object:
        poller = _poller(httpx.MockTransport(_handler), interval_seconds=0.01, timeout_seconds=0.05)
        poller.start()
        return await poller.wait()

    result = asyncio.run(_run())

    assert result.outcome == PollOutcome.TIMED_OUT  # type: ignore[attr-defined]
    assert result.attempts >= 2  # type: ignore[attr-defined]
    assert result.ticket == {"id": "ticket-1", "approved": False}  # type: ignore[attr-defined]


def test_transport_errors_count_as_not_approved() -> None:
    calls = {"count": 0}

    def _handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"id": "ticket-1", "approved": True})

    async def _run() -> object:
        poller = _poller(httpx.MockTransport(_handler))
        poller.start()
        return await poller.wait()

    result = asyncio.run(_run())

    assert result.outcome == PollOutcome.APPROVED  # type: ignore[attr-defined]
    assert result.attempts == 2  # type: ignore[attr-defined]


def test_server_errors_count_as_not_approved() -> None:
    responses = [
        httpx.Response(503, text="Service Unavailable"),
        httpx.Response(500, json={"detail": "boom"}),
        httpx.Response(200, json={"id": "ticket-1", "approved": True}),
    ]
    calls = {"count": 0}

    def _handler(_request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return responses[calls["count"] - 1]

    async def _run() -> object:
        poller = _poller(httpx.MockTransport(_handler))
        poller.start()
        return await poller.wait()

    result = asyncio.run(_run())

    assert result.outcome == PollOutcome.APPROVED  # type: ignore[attr-defined]
    assert result.attempts == 3  # type: ignore[attr-defined]


@pytest.mark.parametrize("status_code", [401, 403])
def test_rejected_credentials_end_polling(status_code: int) -> None:
    calls = {"count": 0}

    def _handler(_request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(status_code, json={"detail": "Invalid token"})

    async def _run() -> object:
        poller = _poller(httpx.MockTransport(_handler))
        poller.start()
        return await poller.wait()

    result = asyncio.run(_run())

    assert result.outcome == PollOutcome.DENIED  # type: ignore[attr-defined]
    assert result.status_code == status_code  # type: ignore[attr-defined]
    assert result.attempts == 1  # type: ignore[attr-defined]
    assert calls["count"] == 1


def test_cancel_after_failed_task_returns_failed_result() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        raise RuntimeError("unexpected client failure")

    async def _run() -> object:
        poller = _poller(httpx.MockTransport(_handler))
        task = poller.start()
        await asyncio.wait({task})
        return await poller.cancel()

    result = asyncio.run(_run())

    assert result.outcome == PollOutcome.FAILED  # type: ignore[attr-defined]
    assert result.attempts == 1  # type: ignore[attr-defined]


def test_cancel_leaves_no_scheduled_work() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "ticket-1", "approved": False})

    async def _run() -> tuple[object, bool, set[asyncio.Task[object]]]:
        poller = _poller(httpx.MockTransport(_handler), interval_seconds=10.0, timeout_seconds=60.0)
        poller.start()
        await asyncio.sleep(0.05)
        result = await poller.cancel()
        leftover = asyncio.all_tasks() - {asyncio.current_task()}  # type: ignore[operator]
        return result, poller.running, leftover

    result, running, leftover = asyncio.run(_run())

    assert result.outcome == PollOutcome.CANCELLED  # type: ignore[attr-defined]
    assert result.attempts == 1  # type: ignore[attr-defined]
    assert running is False
    assert leftover == set()


def test_poller_cannot_start_twice() -> None:
    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "ticket-1", "approved": True})

    async def _run() -> None:
        poller = _poller(httpx.MockTransport(_handler))
        poller.start()
        with pytest.raises(RuntimeError):
            poller.start()
        await poller.wait()

    asyncio.run(_run())


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _poller(httpx.MockTransport(lambda _request: httpx.Response(404)), interval_seconds=0)
