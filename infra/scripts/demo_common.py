from __future__ import annotations

import asyncio
import os
import time
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import httpx

from app.infra.auth import create_access_token


def assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
        except httpx.HTTPError:
            pass
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}")


def demo_tenant(prefix: str) -> str:
    tenant_id = os.getenv("DEMO_TENANT_ID")
    if tenant_id:
        return tenant_id
    return f"{prefix}-tenant-{uuid4().hex[:8]}"


def mint_token(tenant_id: str, user_id: str, permissions: list[str], *, role: str, category: str) -> str:
    return create_access_token(
        user_id=user_id,
        tenant_id=tenant_id,
        permissions=permissions,
        name=user_id,
        role=role,
        category=category,
    )


async def create_site(
    client: httpx.AsyncClient,
    token: str,
    *,
    name: str,
    category: str,
    lat: float,
    lon: float,
    principal_email: str,
) -> str:
    resp = await client.post(
        "/api/directory/sites",
        json={
            "name": name,
            "address": "demo address",
            "category": category,
            "site_type": "primary",
            "principal_name": "Demo Principal",
            "principal_email": principal_email,
            "latitude": lat,
            "longitude": lon,
        },
        headers=auth_headers(token),
    )
    assert_status(resp, 201)
    return resp.json()["id"]


async def create_staff(client: httpx.AsyncClient, token: str, *, name: str, role: str, category: str) -> str:
    resp = await client.post(
        "/api/directory/staff",
        json={"name": name, "email": f"{name.lower().replace(' ', '.')}@demo.local", "role": role, "category": category},
        headers=auth_headers(token),
    )
    assert_status(resp, 201)
    return resp.json()["id"]


async def create_work_item(
    client: httpx.AsyncClient,
    token: str,
    *,
    site_id: str,
    assignee_id: str,
    category: str,
) -> str:
    resp = await client.post(
        "/api/assignments",
        json={
            "site_id": site_id,
            "assignee_id": assignee_id,
            "category": category,
            "deadline": (datetime.now(UTC) + timedelta(days=7)).isoformat(),
            "priority": "high",
            "instructions": "demo inspection",
        },
        headers=auth_headers(token),
    )
    assert_status(resp, 201)
    return resp.json()["id"]
