"""
Integration tests for the API endpoints.
"""

from uuid import uuid4

import pytest_asyncio
from httpx import AsyncClient

from pueue.constants import JobStatus


class TestJobAPI:
    """Integration tests for job API endpoints."""

    @pytest_asyncio.fixture
    async def created_job(self, client: AsyncClient) -> dict:
        """Create a job for testing."""
        response = await client.post(
            "/v1/processes/email/jobs",
            json={"payload": {"to": "a@example.com"}, "max_attempts": 3},
        )
        return response.json()

    async def test_create_job_success(self, client: AsyncClient, sample_payload: dict):
        response = await client.post(
            "/v1/processes/email/jobs",
            json={"payload": sample_payload, "max_attempts": 5, "backoff": 250},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["process_name"] == "email"
        assert data["status"] == JobStatus.PENDING.value
        assert data["message"] == "Job created successfully"

    async def test_create_job_idempotency(self, client: AsyncClient):
        job_id = f"test-{uuid4().hex}"

        response1 = await client.post(
            "/v1/processes/email/jobs",
            json={"id": job_id, "payload": {"v": 1}},
        )
        response2 = await client.post(
            "/v1/processes/email/jobs",
            json={"id": job_id, "payload": {"v": 2}},
        )

        assert response1.status_code == 201
        assert response2.status_code == 201
        assert response2.json()["id"] == job_id
        assert "idempotent" in response2.json()["message"]

        details = await client.get(f"/v1/processes/email/jobs/{job_id}")
        assert details.json()["payload"] == {"v": 1}

    async def test_create_job_invalid_options(self, client: AsyncClient):
        response = await client.post(
            "/v1/processes/email/jobs",
            json={"payload": {}, "max_attempts": 0},
        )

        assert response.status_code == 422

    async def test_create_job_invalid_backoff_type(self, client: AsyncClient):
        response = await client.post(
            "/v1/processes/email/jobs",
            json={"payload": {}, "backoff": {"delay": 10, "type": "random"}},
        )

        assert response.status_code == 422

    async def test_get_job_success(self, client: AsyncClient, created_job: dict):
        response = await client.get(f"/v1/processes/email/jobs/{created_job['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == created_job["id"]
        assert data["attempt"] == 1
        assert data["log"] is None
        assert data["backoff"] == {"delay": 0, "type": "fixed"}

    async def test_get_job_wrong_process(self, client: AsyncClient, created_job: dict):
        response = await client.get(f"/v1/processes/sms/jobs/{created_job['id']}")

        assert response.status_code == 404

    async def test_get_job_not_found(self, client: AsyncClient):
        response = await client.get("/v1/processes/email/jobs/missing")

        assert response.status_code == 404

    async def test_list_jobs(self, client: AsyncClient, created_job: dict):
        response = await client.get("/v1/processes/email/jobs", params={"status": "pending"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["jobs"][0]["id"] == created_job["id"]
        assert data["has_next"] is False

    async def test_job_stats(self, client: AsyncClient, created_job: dict):
        response = await client.get("/v1/jobs/stats", params={"process_name": "email"})

        assert response.status_code == 200
        data = response.json()
        assert data["stats"] == {"pending": 1}
        assert data["queue_depth"] == 1


class TestHealthAPI:
    """Integration tests for health endpoints."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")

        assert response.json() == {"ready": True}

    async def test_metrics_endpoint(self, client: AsyncClient):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "pueue_" in response.text
