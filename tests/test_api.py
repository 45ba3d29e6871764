import httpx
import pytest

from certanchor.main import create_app

ADMIN = {"X-Admin-Key": "admin-key"}


@pytest.fixture
async def client(services):
    app = create_app(services=services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


async def issue(client, user_id="u1", course_id="c1", score=96):
    return await client.post(
        "/api/v1/certificates/issue",
        json={"user_id": user_id, "course_id": course_id, "trigger": {"kind": "assessment_passed", "score": score}},
        headers=ADMIN,
    )


async def test_root_and_health(client):
    root = await client.get("/")
    assert root.status_code == 200
    assert root.json()["health"] == "/api/v1/health"

    health = await client.get("/api/v1/health")
    assert health.json()["status"] == "ok"
    assert health.json()["ledger_mode"] == "simulated"
    assert "X-Request-ID" in health.headers
    assert health.headers["X-Content-Type-Options"] == "nosniff"

    ready = await client.get("/api/v1/health/ready")
    assert ready.json()["dependencies"] == {"database": "healthy", "ledger": "healthy"}

    live = await client.get("/api/v1/health/live")
    assert live.json()["status"] == "alive"


async def test_issue_requires_admin_key(client):
    response = await client.post(
        "/api/v1/certificates/issue",
        json={"user_id": "u1", "course_id": "c1", "trigger": {"kind": "assessment_passed", "score": 96}},
        headers={"X-Admin-Key": "wrong"},
    )
    assert response.status_code == 401


async def test_admin_disabled_without_key(services, settings):
    services.settings = settings.model_copy(update={"admin_api_key": None})
    app = create_app(services=services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        response = await client.get("/api/v1/certificates/stats", headers=ADMIN)
    assert response.status_code == 403


async def test_issue_and_verify(client):
    response = await issue(client)

    assert response.status_code == 200
    body = response.json()
    assert body["created"] is True
    assert body["anchor_mode"] == "immediate"
    assert body["certificate"]["grade"] == "A+"
    certificate_id = body["certificate_id"]

    verified = await client.get(f"/api/v1/verify/{certificate_id}")
    assert verified.status_code == 200
    assert verified.json()["blockchain_status"] == "verified"
    assert verified.json()["matches_blockchain"] is True

    again = await issue(client)
    assert again.json()["certificate_id"] == certificate_id
    assert again.json()["created"] is False


async def test_issue_rejects_low_score(client):
    response = await issue(client, score=40)
    assert response.status_code == 422
    assert "passing score" in response.json()["detail"]


async def test_issue_validates_body(client):
    response = await client.post(
        "/api/v1/certificates/issue",
        json={"user_id": "u1", "course_id": "c1", "trigger": {"kind": "assessment_passed", "score": 140}},
        headers=ADMIN,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "Validation Error"


async def test_verify_by_qr_and_post(client, services):
    certificate_id = (await issue(client)).json()["certificate_id"]
    certificate = await services.store.get(certificate_id)

    by_qr = await client.get("/api/v1/verify/qr", params={"data": certificate.qr_payload})
    assert by_qr.json()["method"] == "qr"
    assert by_qr.json()["blockchain_status"] == "verified"

    by_code = await client.post("/api/v1/verify", json={"verification_code": certificate.verification_code})
    assert by_code.status_code == 200
    assert by_code.json()["error"]["code"] == "unsupported_method"


async def test_verify_unknown_certificate(client):
    response = await client.get("/api/v1/verify/ZZZZZZZZZZZZ")
    assert response.status_code == 200
    assert response.json()["blockchain_status"] == "not_found"
    assert response.json()["error"]["code"] == "not_found"


async def test_certificate_endpoints(client):
    certificate_id = (await issue(client)).json()["certificate_id"]

    fetched = await client.get(f"/api/v1/certificates/{certificate_id}", headers=ADMIN)
    assert fetched.json()["certificate_id"] == certificate_id

    status = await client.get(f"/api/v1/certificates/{certificate_id}/blockchain-status", headers=ADMIN)
    assert status.json()["status"] == "verified"

    retry = await client.post(f"/api/v1/certificates/{certificate_id}/retry-anchor", headers=ADMIN)
    assert retry.json()["action"] == "already_anchored"

    share = await client.get(f"/api/v1/certificates/{certificate_id}/share")
    assert share.status_code == 200

    listed = await client.get("/api/v1/users/u1/certificates", headers=ADMIN)
    assert [item["certificate_id"] for item in listed.json()] == [certificate_id]

    stats = await client.get("/api/v1/certificates/stats", headers=ADMIN)
    assert stats.json()["total"] == 1

    revoked = await client.post(f"/api/v1/certificates/{certificate_id}/revoke", json={"reason": "test"}, headers=ADMIN)
    assert revoked.json()["is_valid"] is False

    verified = await client.get(f"/api/v1/verify/{certificate_id}")
    assert verified.json()["message"] == "revoked"


async def test_unknown_certificate_is_404(client):
    response = await client.get("/api/v1/certificates/ZZZZZZZZZZZZ", headers=ADMIN)
    assert response.status_code == 404

    response = await client.post("/api/v1/certificates/ZZZZZZZZZZZZ/revoke", json={}, headers=ADMIN)
    assert response.status_code == 404


async def test_mint_queue_endpoints(client, anchor):
    anchor.connected = False
    body = (await issue(client)).json()
    assert body["anchor_mode"] == "queued"
    job_id = body["queue_job_id"]

    stats = await client.get("/api/v1/blockchain/mint-queue/stats", headers=ADMIN)
    assert stats.json()["pending"] == 1

    jobs = await client.get("/api/v1/blockchain/mint-queue/jobs", params={"status": "pending"}, headers=ADMIN)
    assert [job["job_id"] for job in jobs.json()] == [job_id]

    job = await client.get(f"/api/v1/blockchain/mint-queue/jobs/{job_id}", headers=ADMIN)
    assert job.json()["queue_reason"] == "wallet_not_ready"

    missing = await client.get("/api/v1/blockchain/mint-queue/jobs/nope", headers=ADMIN)
    assert missing.status_code == 404

    anchor.connected = True
    processed = await client.post("/api/v1/blockchain/mint-queue/process", json={"max_jobs": 5}, headers=ADMIN)
    assert processed.json()["processed"] == 1
    assert processed.json()["stats"]["completed"] == 1

    assert (await client.post("/api/v1/blockchain/mint-queue/retry", json={}, headers=ADMIN)).json() == {"requeued": 0}
    assert (await client.post("/api/v1/blockchain/mint-queue/reclaim", headers=ADMIN)).json() == {"reclaimed": 0}
    assert (await client.post("/api/v1/blockchain/mint-queue/cleanup", headers=ADMIN)).json() == {"deleted": 0}
    purged = await client.post("/api/v1/blockchain/mint-queue/purge", json={"job_ids": [job_id]}, headers=ADMIN)
    assert purged.json() == {"deleted": 1}


async def test_mint_queue_requires_admin(client):
    response = await client.get("/api/v1/blockchain/mint-queue/stats")
    assert response.status_code == 401


async def test_wallet_status(client):
    response = await client.get("/api/v1/blockchain/wallet", headers=ADMIN)
    body = response.json()
    assert body["mode"] == "simulated"
    assert body["connected"] is True
    assert body["can_mint"] is True


async def test_documents(client, services):
    address = await services.content_store.put(b"%PDF-1.4 test", "application/pdf")

    response = await client.get(f"/api/v1/documents/{address}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content == b"%PDF-1.4 test"

    missing = await client.get("/api/v1/documents/sha256-missing")
    assert missing.status_code == 404
