"""
Job Manager Tests

Covers job creation, resume and cancellation against the in-memory
Supabase fake.
Run with: python -m pytest tests/test_job_manager.py -v
"""

import pytest

from fake_supabase import PNG_BYTES
from sticker_app.jobs.errors import DependencyError, NotFoundError, ValidationError
from sticker_app.jobs.job_types import JobStatus, WorkItemStatus


def _items(fake_supabase, job_id):
    return [r for r in fake_supabase.rows("stickers") if r["job_id"] == job_id]


# =============================================================================
# CREATE
# =============================================================================

class TestCreateJob:

    def test_creates_job_work_items_and_messages(self, services, fake_supabase, style_id):
        """Two subjects give two queued stickers and two queue messages."""
        list_id = fake_supabase.add_subject_list(["cat", "dog"])

        response = services.manager.create_job(style_id, list_id)

        assert response.total == 2
        job = fake_supabase.row("sticker_jobs", response.job_id)
        assert job["status"] == "queued"
        assert job["total"] == 2
        assert job["completed"] == 0

        items = _items(fake_supabase, response.job_id)
        assert sorted(i["subject"] for i in items) == ["cat", "dog"]
        assert all(i["status"] == "queued" and i["attempts"] == 0 for i in items)

        payloads = [m["message"] for m in fake_supabase.queue.messages.values()]
        assert len(payloads) == 2
        assert {p["workItemId"] for p in payloads} == {i["id"] for i in items}
        assert all(p["jobId"] == response.job_id for p in payloads)
        assert all(p["kind"] == "generate_sticker" for p in payloads)

    def test_blank_subjects_are_dropped(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["  cat ", "", "   ", None, "dog"])

        response = services.manager.create_job(style_id, list_id)

        assert response.total == 2
        subjects = sorted(i["subject"] for i in _items(fake_supabase, response.job_id))
        assert subjects == ["cat", "dog"]

    def test_prompt_json_is_recorded(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat"])

        response = services.manager.create_job(style_id, list_id)

        prompt = fake_supabase.row("sticker_jobs", response.job_id)["prompt_json"]
        assert prompt["style_id"] == style_id
        assert prompt["subjects"] == ["cat"]
        assert prompt["template"]["style"] == "die-cut sticker"

    @pytest.mark.parametrize("style, subject_list", [("", "list"), ("style", ""), ("  ", "list"), (None, "list")])
    def test_missing_ids_raise_validation_error(self, services, fake_supabase, style, subject_list):
        with pytest.raises(ValidationError):
            services.manager.create_job(style, subject_list)
        assert fake_supabase.rows("sticker_jobs") == []

    def test_unknown_subject_list_raises_not_found(self, services, fake_supabase, style_id):
        with pytest.raises(NotFoundError):
            services.manager.create_job(style_id, "no-such-list")
        assert fake_supabase.rows("sticker_jobs") == []

    def test_unknown_style_raises_not_found(self, services, fake_supabase):
        list_id = fake_supabase.add_subject_list(["cat"])
        with pytest.raises(NotFoundError):
            services.manager.create_job("no-such-style", list_id)
        assert fake_supabase.rows("sticker_jobs") == []
        assert fake_supabase.queue.messages == {}

    def test_empty_subject_list_raises_validation_error(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["", "  "])
        with pytest.raises(ValidationError):
            services.manager.create_job(style_id, list_id)
        assert fake_supabase.rows("sticker_jobs") == []

    def test_subject_list_that_is_not_a_list_is_rejected(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list("cat, dog")
        with pytest.raises(ValidationError):
            services.manager.create_job(style_id, list_id)

    def test_store_failure_surfaces_as_dependency_error(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat"])
        fake_supabase.fail("sticker_jobs", "insert")
        with pytest.raises(DependencyError):
            services.manager.create_job(style_id, list_id)

    def test_partial_insert_response_is_reread(self, services, fake_supabase, style_id):
        """Every created row gets a message even if the insert echoes fewer rows."""
        list_id = fake_supabase.add_subject_list(["cat", "dog", "owl"])
        fake_supabase.truncate_inserts["stickers"] = 1

        response = services.manager.create_job(style_id, list_id)

        assert response.total == 3
        assert len(fake_supabase.queue.messages) == 3

    def test_enqueue_failure_marks_job_error_and_keeps_rows(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat", "dog"])
        fake_supabase.queue.fail_sends_after = 1

        with pytest.raises(DependencyError) as exc_info:
            services.manager.create_job(style_id, list_id)

        job_id = exc_info.value.details["job_id"]
        job = fake_supabase.row("sticker_jobs", job_id)
        assert job["status"] == "error"
        assert "queue unavailable" in job["error"]
        assert len(_items(fake_supabase, job_id)) == 2
        assert len(fake_supabase.queue.messages) == 1

    def test_work_item_insert_failure_marks_job_error(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat", "dog"])
        fake_supabase.fail("stickers", "insert")

        with pytest.raises(DependencyError) as exc_info:
            services.manager.create_job(style_id, list_id)

        error = exc_info.value
        assert error.message == "Failed to create stickers"
        job = fake_supabase.row("sticker_jobs", error.details["job_id"])
        assert job["status"] == "error"
        assert "stickers insert failed" in job["error"]
        assert fake_supabase.rows("stickers") == []
        assert fake_supabase.queue.messages == {}

    def test_resume_recovers_after_enqueue_failure(self, services, fake_supabase, style_id):
        list_id = fake_supabase.add_subject_list(["cat", "dog"])
        fake_supabase.queue.fail_sends_after = 1
        with pytest.raises(DependencyError) as exc_info:
            services.manager.create_job(style_id, list_id)
        job_id = exc_info.value.details["job_id"]

        fake_supabase.queue.fail_sends_after = None
        response = services.manager.resume_job(job_id)

        assert response.enqueued == 2
        assert fake_supabase.row("sticker_jobs", job_id)["status"] == "running"

        result = services.runner.drain(batch_size=5)
        # The stale duplicate for the first sticker is acknowledged as already done
        assert result.leased == 3
        assert result.succeeded == 3
        assert len(services.generator.calls) == 2
        assert fake_supabase.row("sticker_jobs", job_id)["status"] == "done"


# =============================================================================
# RESUME
# =============================================================================

class TestResumeJob:

    def test_resume_with_nothing_queued_is_a_no_op(self, services, fake_supabase, make_job):
        job_id = make_job(["cat"])
        services.runner.drain(batch_size=1)
        assert fake_supabase.row("sticker_jobs", job_id)["status"] == "done"
        sent_before = len(fake_supabase.queue.sent)

        response = services.manager.resume_job(job_id)

        assert response.enqueued == 0
        assert fake_supabase.row("sticker_jobs", job_id)["status"] == "done"
        assert len(fake_supabase.queue.sent) == sent_before

    def test_resume_only_enqueues_queued_items(self, services, fake_supabase, make_job, generator):
        job_id = make_job(["cat", "dog", "owl"])
        generator.failures = [RuntimeError("flaky")]
        services.runner.drain(batch_size=2)
        statuses = sorted(i["status"] for i in _items(fake_supabase, job_id))
        assert statuses == ["done", "queued", "queued"]

        response = services.manager.resume_job(job_id)

        assert response.enqueued == 2
        new_payloads = fake_supabase.queue.sent[-2:]
        queued_ids = {i["id"] for i in _items(fake_supabase, job_id) if i["status"] == "queued"}
        assert {p["workItemId"] for p in new_payloads} == queued_ids

    def test_resume_does_not_duplicate_rows(self, services, fake_supabase, make_job):
        job_id = make_job(["cat", "dog"])
        services.manager.resume_job(job_id)
        assert len(_items(fake_supabase, job_id)) == 2

    def test_resume_unknown_job_raises_not_found(self, services):
        with pytest.raises(NotFoundError):
            services.manager.resume_job("missing")

    def test_resume_requires_job_id(self, services):
        with pytest.raises(ValidationError):
            services.manager.resume_job("")


# =============================================================================
# CANCEL
# =============================================================================

class TestCancelJob:

    def test_cancel_removes_rows_and_artifacts(self, services, fake_supabase, make_job):
        """One done and one running sticker: everything is deleted, orphans included."""
        job_id = make_job(["cat", "dog"])
        services.runner.drain(batch_size=1)

        items = _items(fake_supabase, job_id)
        done = next(i for i in items if i["status"] == "done")
        pending = next(i for i in items if i["status"] == "queued")
        services.store.transition_work_item(
            pending["id"], WorkItemStatus.QUEUED, WorkItemStatus.RUNNING,
            {"attempts": 1}, expected_attempts=0,
        )
        # Upload that landed but was never recorded on the row
        bucket = fake_supabase.storage.buckets["stickers"]
        bucket[f"{job_id}/{pending['id']}.png"] = PNG_BYTES

        response = services.manager.cancel_job(job_id)

        assert response.job_id == job_id
        assert response.deleted_work_items == 2
        assert response.deleted_artifacts == 2
        assert f"{job_id}/{done['id']}.png" not in bucket
        assert bucket == {}
        assert _items(fake_supabase, job_id) == []
        assert fake_supabase.row("sticker_jobs", job_id) is None

    def test_cancel_removes_upload_that_lands_during_cleanup(
        self, services, fake_supabase, make_job, monkeypatch
    ):
        """An image written after the first listing is still deleted."""
        job_id = make_job(["cat"])
        item_id = _items(fake_supabase, job_id)[0]["id"]
        late_path = f"{job_id}/{item_id}.png"
        delete_work_items = services.store.delete_work_items

        def finish_upload_then_delete(target_job_id):
            services.artifacts.upload(late_path, PNG_BYTES)
            return delete_work_items(target_job_id)

        monkeypatch.setattr(services.store, "delete_work_items", finish_upload_then_delete)

        response = services.manager.cancel_job(job_id)

        assert response.deleted_artifacts == 1
        assert late_path not in fake_supabase.storage.buckets["stickers"]

    def test_cancel_twice_returns_zero_counts(self, services, make_job):
        job_id = make_job(["cat", "dog"])
        services.runner.drain(batch_size=2)

        first = services.manager.cancel_job(job_id)
        second = services.manager.cancel_job(job_id)

        assert (first.deleted_work_items, first.deleted_artifacts) == (2, 2)
        assert (second.deleted_work_items, second.deleted_artifacts) == (0, 0)

    def test_cancel_unknown_job_returns_zero_counts(self, services):
        response = services.manager.cancel_job("does-not-exist")
        assert response.deleted_work_items == 0
        assert response.deleted_artifacts == 0

    def test_cancel_requires_job_id(self, services):
        with pytest.raises(ValidationError):
            services.manager.cancel_job("  ")

    def test_artifacts_are_deleted_in_chunks(self, services, fake_supabase, make_job):
        job_id = make_job(["cat"])
        bucket = fake_supabase.storage.buckets.setdefault("stickers", {})
        for n in range(230):
            bucket[f"{job_id}/stray-{n:03d}.png"] = PNG_BYTES

        response = services.manager.cancel_job(job_id)

        assert response.deleted_artifacts == 230
        assert [len(c) for c in fake_supabase.storage.remove_calls] == [100, 100, 30]

    def test_failed_chunk_is_not_counted(self, services, fake_supabase, make_job):
        job_id = make_job(["cat"])
        services.runner.drain(batch_size=1)
        fake_supabase.storage.fail_removes = True

        response = services.manager.cancel_job(job_id)

        assert response.deleted_artifacts == 0
        assert response.deleted_work_items == 1

    def test_cancelled_job_messages_are_dropped(self, services, fake_supabase, make_job, generator):
        job_id = make_job(["cat", "dog"])
        services.manager.cancel_job(job_id)

        result = services.runner.drain(batch_size=5)

        assert result.leased == 2
        assert result.failed == 2
        assert generator.calls == []
        assert fake_supabase.queue.messages == {}

    def test_job_status_reports_items(self, services, make_job, generator):
        job_id = make_job(["cat", "dog"])
        generator.failures = [RuntimeError("model overloaded")]
        services.runner.drain(batch_size=2)

        status = services.manager.get_job_status(job_id)

        assert status.status == JobStatus.RUNNING
        assert status.total == 2
        assert status.completed == 1
        errors = [i.error for i in status.items if i.error]
        assert errors == ["model overloaded"]
        assert status.can_resume is True

    def test_list_jobs_newest_first(self, services, make_job):
        first = make_job(["cat"])
        second = make_job(["dog"])

        listing = services.manager.list_jobs(limit=1)

        assert listing.total_count == 2
        assert listing.has_more is True
        assert listing.jobs[0].job_id == second
        assert first != second
