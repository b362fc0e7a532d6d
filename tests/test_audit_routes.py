import json

import pytest
from sqlalchemy import func, select

from uxaudit.database import async_session
from uxaudit.models.api_key import ApiKey
from uxaudit.models.job import AuditJob
from uxaudit.services import job_store
from uxaudit.services.api_keys import create_api_key


async def count_jobs() -> int:
    async with async_session() as db:
        return (await db.execute(select(func.count()).select_from(AuditJob))).scalar_one()


async def completed_job() -> AuditJob:
    job = await job_store.create_job({"inputs": [{"type": "url", "url": "https://shop.test"}]})
    await job_store.update_status(job.id, "processing")
    await job_store.append_progress(job.id, "✓ UX complete.", {"UX Audit expert": {"OverallScore": 70}})
    report = await job_store.append_progress(job.id, "✓ Job complete. Report ready.")
    await job_store.update_status(job.id, "completed", report_data=report, result_url=f"/report/{job.id}")
    return job


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestSubmit:
    @pytest.mark.asyncio
    async def test_valid_standard_audit_creates_pending_job(self, client):
        response = await client.post("/api/v1/audit", json={
            "inputs": [{"type": "url", "url": "https://shop.test"}],
        })

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["statusUrl"] == f"/api/v1/audit/{body['jobId']}"
        job = await job_store.get_job(body["jobId"])
        assert job.input_data == {"inputs": [{"type": "url", "url": "https://shop.test"}], "auditMode": "standard"}

    @pytest.mark.asyncio
    async def test_valid_competitor_audit(self, client):
        response = await client.post("/api/v1/audit", json={
            "auditMode": "competitor",
            "inputs": [{"type": "url", "url": "https://a.test"}, {"type": "url", "url": "https://b.test"}],
        })
        assert response.status_code == 202

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"inputs": []},
        {"inputs": [{"type": "url", "url": f"https://s{i}.test"} for i in range(6)]},
        {"inputs": [{"type": "url", "url": "https://a.test"}], "auditMode": "competitor"},
        {"inputs": [{"type": "url", "url": "https://a.test"}, {"type": "upload", "fileData": "eA=="}],
         "auditMode": "competitor"},
        {"inputs": [{"type": "url"}]},
        {"inputs": [{"type": "upload"}]},
        {"inputs": [{"type": "ftp", "url": "ftp://x"}]},
    ])
    async def test_invalid_inputs_rejected_without_job(self, client, payload):
        response = await client.post("/api/v1/audit", json=payload)

        assert response.status_code == 422
        assert await count_jobs() == 0


class TestStatus:
    @pytest.mark.asyncio
    async def test_snapshot_includes_progress(self, client):
        job = await job_store.create_job({"inputs": [{"type": "url", "url": "https://shop.test"}]})
        await job_store.update_status(job.id, "processing")
        await job_store.append_progress(job.id, "✓ Scrape complete. Analyzing content...", {"url": "https://shop.test"})

        response = await client.get(f"/api/v1/audit/{job.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "processing"
        assert body["progress"] == 30
        assert body["reportData"]["url"] == "https://shop.test"
        assert body["errorMessage"] is None

    @pytest.mark.asyncio
    async def test_unknown_job_404(self, client):
        response = await client.get("/api/v1/audit/does-not-exist")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_logs_endpoint(self, client):
        job = await job_store.create_job({"inputs": [{"type": "url", "url": "https://shop.test"}]})

        response = await client.get(f"/api/v1/audit/{job.id}/logs")

        assert response.status_code == 200
        body = response.json()
        assert body["jobId"] == job.id
        assert [e["message"] for e in body["logs"]] == ["Audit queued..."]

    @pytest.mark.asyncio
    async def test_stream_of_completed_job(self, client):
        job = await completed_job()

        response = await client.get(f"/api/v1/audit/{job.id}/stream")

        assert response.status_code == 200
        events = [json.loads(line) for line in response.text.splitlines() if line.strip()]
        assert [e["type"] for e in events][-1] == "complete"
        assert events[-1]["resultUrl"] == f"/report/{job.id}"
        statuses = [e["message"] for e in events if e["type"] == "status"]
        assert statuses == ["Audit queued...", "✓ UX complete.", "✓ Job complete. Report ready."]
        assert [e["key"] for e in events if e["type"] == "data"] == ["UX Audit expert"]


class TestExternal:
    @pytest.mark.asyncio
    async def test_valid_key_and_origin(self, client):
        api_key = await create_api_key("Acme", ["https://acme.com"])

        response = await client.post(
            "/api/external/audit",
            json={"inputs": [{"type": "url", "url": "https://acme.com"}]},
            headers={"Authorization": f"Bearer {api_key.key}", "Origin": "https://acme.com"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["redirectUrl"].endswith(f"/analysis/{body['jobId']}")
        job = await job_store.get_job(body["jobId"])
        assert job.api_key_id == api_key.id
        async with async_session() as db:
            stored = await db.get(ApiKey, api_key.id)
            assert stored.usage_count == 1
            assert stored.last_used_at is not None

    @pytest.mark.asyncio
    async def test_disallowed_origin(self, client):
        api_key = await create_api_key("Acme", ["https://acme.com"])

        response = await client.post(
            "/api/external/audit",
            json={"inputs": [{"type": "url", "url": "https://acme.com"}]},
            headers={"Authorization": f"Bearer {api_key.key}", "Origin": "https://evil.test"},
        )

        assert response.status_code == 401
        assert await count_jobs() == 0

    @pytest.mark.asyncio
    async def test_unknown_key(self, client):
        response = await client.post(
            "/api/external/audit",
            json={"inputs": [{"type": "url", "url": "https://acme.com"}]},
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401


class TestPublic:
    @pytest.mark.asyncio
    async def test_completed_report_is_public(self, client):
        job = await completed_job()

        response = await client.get(f"/api/public/jobs/{job.id}")

        assert response.status_code == 200
        assert response.json()["reportData"]["UX Audit expert"] == {"OverallScore": 70}

    @pytest.mark.asyncio
    async def test_unfinished_report_is_forbidden(self, client):
        job = await job_store.create_job({"inputs": [{"type": "url", "url": "https://shop.test"}]})

        response = await client.get(f"/api/public/jobs/{job.id}")

        assert response.status_code == 403
        assert response.json()["detail"]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_unknown_report(self, client):
        response = await client.get("/api/public/jobs/missing")
        assert response.status_code == 404
