"""
API Route Tests

Exercises the FastAPI app with injected services. The client is used
without a context manager so the lifespan does not connect to Supabase.
Run with: python -m pytest tests/test_routes.py -v
"""

import json

import pytest
from fastapi.testclient import TestClient

from sticker_app.main import create_app


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def _sse_events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


# =============================================================================
# SYSTEM
# =============================================================================

def test_health(client):
    response = client.get("/api/system/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["environment"] == "test"
    assert data["services"] == {
        "supabase": "connected",
        "generation": "configured",
        "queue": "sticker_tasks",
    }


# =============================================================================
# JOBS
# =============================================================================

class TestJobEndpoints:

    def test_create_job(self, client, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat", "dog"])

        response = client.post(
            "/api/sticker-pack/jobs",
            json={"styleId": style_id, "subjectListId": list_id},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert fake_supabase.row("sticker_jobs", data["job_id"]) is not None

    def test_create_job_missing_fields(self, client):
        response = client.post("/api/sticker-pack/jobs", json={"styleId": "s"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "validation_error"

    def test_create_job_unknown_style(self, client, fake_supabase):
        list_id = fake_supabase.add_subject_list(["cat"])

        response = client.post(
            "/api/sticker-pack/jobs",
            json={"style_id": "nope", "subject_list_id": list_id},
        )

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "not_found"

    def test_create_job_enqueue_failure(self, client, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat"])
        fake_supabase.queue.fail_sends_after = 0

        response = client.post(
            "/api/sticker-pack/jobs",
            json={"styleId": style_id, "subjectListId": list_id},
        )

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["code"] == "dependency_error"
        assert fake_supabase.row("sticker_jobs", detail["job_id"])["status"] == "error"

    def test_job_status(self, client, make_job):
        job_id = make_job(["cat", "dog"])

        response = client.get(f"/api/sticker-pack/jobs/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "queued"
        assert data["total"] == 2
        assert len(data["items"]) == 2
        assert data["can_resume"] is True

    def test_job_status_not_found(self, client):
        response = client.get("/api/sticker-pack/jobs/missing")
        assert response.status_code == 404

    def test_list_jobs(self, client, make_job):
        make_job(["cat"])
        make_job(["dog"])

        response = client.get("/api/sticker-pack/jobs", params={"limit": 1})

        data = response.json()
        assert data["total_count"] == 2
        assert len(data["jobs"]) == 1
        assert data["has_more"] is True

    def test_resume_and_cancel(self, client, fake_supabase, make_job):
        job_id = make_job(["cat"])

        resumed = client.post(f"/api/sticker-pack/jobs/{job_id}/resume")
        assert resumed.status_code == 200
        assert resumed.json() == {"job_id": job_id, "enqueued": 1}

        cancelled = client.post(f"/api/sticker-pack/jobs/{job_id}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["deleted_work_items"] == 1
        assert fake_supabase.row("sticker_jobs", job_id) is None

    def test_resume_not_found(self, client):
        response = client.post("/api/sticker-pack/jobs/missing/resume")
        assert response.status_code == 404


# =============================================================================
# DRAIN
# =============================================================================

class TestDrainEndpoint:

    def test_drain_with_camel_case_body(self, client, fake_supabase, make_job):
        make_job(["cat", "dog", "owl"])

        response = client.post(
            "/api/sticker-pack/worker/drain",
            json={"batchSize": 2, "visibilityTimeoutSeconds": 30, "maxAttempts": 3},
        )

        assert response.status_code == 200
        assert response.json() == {"leased": 2, "succeeded": 2, "failed": 0}
        assert fake_supabase.queue.read_calls == [(2, 30)]

    def test_drain_without_body_uses_defaults(self, client, fake_supabase):
        response = client.post("/api/sticker-pack/worker/drain")

        assert response.status_code == 200
        assert response.json() == {"leased": 0, "succeeded": 0, "failed": 0}
        assert fake_supabase.queue.read_calls == [(5, 60)]

    def test_drain_clamps_out_of_range_values(self, client, fake_supabase):
        client.post("/api/sticker-pack/worker/drain", json={"batch_size": 500})
        assert fake_supabase.queue.read_calls == [(25, 60)]

    def test_drain_read_failure(self, client, fake_supabase):
        fake_supabase.queue.fail_reads = True

        response = client.post("/api/sticker-pack/worker/drain", json={})

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "dependency_error"


# =============================================================================
# ACTION ENDPOINT
# =============================================================================

class TestActionEndpoint:

    def test_create_action(self, client, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat"])

        response = client.post(
            "/api/sticker-pack",
            json={"action": "create", "styleId": style_id, "subjectListId": list_id},
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_cancel_action(self, client, make_job):
        job_id = make_job(["cat"])

        response = client.post("/api/sticker-pack", json={"action": "cancel", "jobId": job_id})

        assert response.status_code == 200
        assert response.json()["deleted_work_items"] == 1

    def test_resume_action_requires_job_id(self, client):
        response = client.post("/api/sticker-pack", json={"action": "resume"})
        assert response.status_code == 400

    def test_unknown_action(self, client):
        response = client.post("/api/sticker-pack", json={"action": "explode"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "validation_error"


# =============================================================================
# SSE
# =============================================================================

class TestStream:

    def test_stream_finished_job(self, client, services, make_job):
        job_id = make_job(["cat"])
        services.runner.drain()

        response = client.get(f"/api/sticker-pack/jobs/{job_id}/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(response.text)
        assert [e["type"] for e in events] == ["status", "complete"]
        assert events[0]["completed"] == 1
        assert events[1]["status"] == "done"

    def test_stream_unknown_job(self, client):
        response = client.get("/api/sticker-pack/jobs/missing/stream")

        events = _sse_events(response.text)
        assert events == [{"type": "gone", "job_id": "missing"}]
