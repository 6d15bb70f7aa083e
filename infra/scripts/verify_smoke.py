from __future__ import annotations

import asyncio
import os
import time
from uuid import uuid4

import httpx

RECLONE_STEP_COUNT = 10


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    last_body = ""
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    username = os.getenv("SMOKE_ADMIN_USERNAME", "admin")
    password = os.getenv("SMOKE_ADMIN_PASSWORD", "admin-pass")
    run_id = uuid4().hex[:8]

    timeout = httpx.Timeout(20.0)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        bootstrap_resp = await client.post(
            "/api/identity/bootstrap-admin",
            json={"username": username, "name": "Smoke Admin", "password": password},
        )
        # 409 means an earlier run already initialized users.
        _assert_status(bootstrap_resp, (201, 409))

        login_resp = await client.post("/api/identity/login", json={"username": username, "password": password})
        _assert_status(login_resp, 200)
        headers = _auth_headers(login_resp.json()["access_token"])

        tag_resp = await client.get("/api/assets/next-tag", headers=headers)
        _assert_status(tag_resp, 200)
        asset_resp = await client.post(
            "/api/assets",
            json={
                "tag": tag_resp.json()["tag"],
                "description": f"smoke-{run_id}",
                "tracking_status": "in-repair",
                "repair_status": "smoke reclone",
                "needs_reclone": True,
            },
            headers=headers,
        )
        _assert_status(asset_resp, 201)
        asset_id = asset_resp.json()["id"]

        purchase_resp = await client.post(
            "/api/tickets/purchases",
            json={"po_number": f"SMOKE-{run_id}", "quantity": 1},
            headers=headers,
        )
        _assert_status(purchase_resp, 201)

        blocked = await client.post(f"/api/reclone/{asset_id}/steps/1", headers=headers)
        _assert_status(blocked, 409)
        if blocked.json()["detail"]["code"] != "TicketRequired":
            raise RuntimeError(f"expected TicketRequired, got {blocked.text}")

        assign_resp = await client.post(
            "/api/tickets/assignments",
            json={"purchase_id": purchase_resp.json()["id"], "asset_id": asset_id},
            headers=headers,
        )
        _assert_status(assign_resp, 201)

        for step_id in range(1, RECLONE_STEP_COUNT + 1):
            step_resp = await client.post(f"/api/reclone/{asset_id}/steps/{step_id}", headers=headers)
            _assert_status(step_resp, 200)

        finish_resp = await client.post(f"/api/reclone/{asset_id}/finish", headers=headers)
        _assert_status(finish_resp, 200)
        if finish_resp.json()["tracking_status"] != "in-use":
            raise RuntimeError("finished reclone did not return the asset to in-use")

        verify_resp = await client.post(f"/api/audit/assets/{asset_id}/verify", headers=headers)
        _assert_status(verify_resp, 200)

        delete_resp = await client.delete(f"/api/assets/{asset_id}", headers=headers)
        _assert_status(delete_resp, 204)

    print("verify_smoke: healthz/readyz + ticket allocation + reclone workflow + audit verify ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
