from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime

import httpx
from demo_common import (
    assert_status,
    auth_headers,
    create_site,
    create_staff,
    create_work_item,
    demo_tenant,
    mint_token,
    wait_ok,
)

from app.client.approval_poller import ApprovalStatusPoller, PollOutcome

SITE_LAT = 30.5912
SITE_LON = 114.3011


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    timeout = httpx.Timeout(20.0)
    tenant_id = demo_tenant("inspection")
    admin = mint_token(tenant_id, "demo-admin", ["*"], role="admin", category="education")
    tier1 = mint_token(tenant_id, "demo-deo", ["inspection.read", "inspection.review.tier1"], role="deo", category="education")
    tier2 = mint_token(tenant_id, "demo-ceo", ["inspection.read", "inspection.review.tier2"], role="ceo", category="education")

    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await wait_ok(client, "/healthz")
        await wait_ok(client, "/readyz")

        site_id = await create_site(
            client,
            admin,
            name="Demo Primary School",
            category="education",
            lat=SITE_LAT,
            lon=SITE_LON,
            principal_email="principal@demo.local",
        )
        inspector_id = await create_staff(client, admin, name="Demo Inspector", role="inspector", category="education")
        inspector = mint_token(
            tenant_id,
            inspector_id,
            ["inspection.read", "inspection.submit", "approval.read", "approval.write", "evidence.write"],
            role="inspector",
            category="education",
        )
        work_item_id = await create_work_item(
            client,
            admin,
            site_id=site_id,
            assignee_id=inspector_id,
            category="education",
        )

        ticket_resp = await client.post(
            "/api/approvals",
            json={"work_item_id": work_item_id, "site_id": site_id},
            headers=auth_headers(inspector),
        )
        assert_status(ticket_resp, 201)

        poller = ApprovalStatusPoller(
            base_url=base_url,
            token=inspector,
            work_item_id=work_item_id,
            site_id=site_id,
            interval_seconds=0.5,
            timeout_seconds=30.0,
        )
        poller.start()
        simulate_resp = await client.post(
            "/api/approvals/simulate",
            json={"work_item_id": work_item_id, "site_id": site_id},
            headers=auth_headers(admin),
        )
        assert_status(simulate_resp, 200)
        poll_result = await poller.wait()
        if poll_result.outcome != PollOutcome.APPROVED:
            raise RuntimeError(f"approval poll ended with {poll_result.outcome}")

        signature_resp = await client.post(
            "/api/evidence",
            json={"kind": "signature", "content_base64": "iVBORw0KGgo=", "content_type": "image/png"},
            headers=auth_headers(inspector),
        )
        assert_status(signature_resp, 201)

        narrative = "Classrooms orderly, registers complete, water storage covered and staff present."
        submit_resp = await client.post(
            "/api/inspections",
            json={
                "work_item_id": work_item_id,
                "inspection_date": datetime.now(UTC).date().isoformat(),
                "responses": {
                    "toilets_functional": {"kind": "boolean", "value": True},
                    "staff_on_duty": {"kind": "number", "value": 12},
                },
                "inspection_location": {"latitude": SITE_LAT + 0.0003, "longitude": SITE_LON},
                "strengths": narrative,
                "improvements": narrative,
                "recommendations": narrative,
                "signature_ref": signature_resp.json()["reference"],
            },
            headers=auth_headers(inspector),
        )
        assert_status(submit_resp, 201)
        report_id = submit_resp.json()["id"]

        tier1_resp = await client.put(
            f"/api/inspections/{report_id}",
            json={
                "action": "tier1_decision",
                "tier1_decision": "approved",
                "signature_ref": signature_resp.json()["reference"],
            },
            headers=auth_headers(tier1),
        )
        assert_status(tier1_resp, 200)

        tier2_resp = await client.put(
            f"/api/inspections/{report_id}",
            json={"action": "tier2_decision", "tier2_decision": "satisfactory"},
            headers=auth_headers(tier2),
        )
        assert_status(tier2_resp, 200)
        if tier2_resp.json()["work_item_sync"] != "synced":
            raise RuntimeError("work item was not synchronized")

        item_resp = await client.get(f"/api/assignments/{work_item_id}", headers=auth_headers(admin))
        assert_status(item_resp, 200)
        if item_resp.json()["status"] != "completed":
            raise RuntimeError("work item was not completed")

        report_resp = await client.get(f"/api/inspections/{report_id}/report", headers=auth_headers(tier2))
        assert_status(report_resp, (200, 404))

    print("demo_inspection_workflow: ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
