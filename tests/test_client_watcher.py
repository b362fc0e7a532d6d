import asyncio

import pytest

from uxaudit.client.watcher import (
    PollingJobWatcher,
    StreamingJobWatcher,
    resolve_entry,
)


class Recorder:
    def __init__(self):
        self.updates = []
        self.completed = []
        self.errors = []

    def on_update(self, update):
        self.updates.append(update)

    async def on_complete(self, snapshot):
        self.completed.append(snapshot)

    def on_error(self, message):
        self.errors.append(message)

    def callbacks(self):
        return self.on_update, self.on_complete, self.on_error


def snapshot(status, logs, **report):
    return {
        "id": "job-1",
        "status": status,
        "reportData": {"logs": [{"message": m} for m in logs], **report},
        "errorMessage": "Scraping failed: boom" if status == "failed" else None,
        "resultUrl": "/report/job-1" if status == "completed" else None,
    }


async def no_sleep(seconds):
    pass


def scripted_fetch(*snapshots):
    remaining = list(snapshots)

    async def fetch(job_id):
        return remaining.pop(0)

    return fetch


class TestResolveEntry:
    def test_missing(self):
        assert resolve_entry(None).action == "missing"

    def test_completed_goes_to_report(self):
        decision = resolve_entry(snapshot("completed", []))
        assert (decision.action, decision.result_url) == ("report", "/report/job-1")

    def test_failed(self):
        decision = resolve_entry(snapshot("failed", []))
        assert (decision.action, decision.error) == ("failed", "Scraping failed: boom")

    def test_in_flight_polls(self):
        assert resolve_entry(snapshot("pending", [])).action == "poll"
        assert resolve_entry(snapshot("processing", [])).action == "poll"


class TestPollingWatcher:
    @pytest.mark.asyncio
    async def test_each_log_and_key_reported_once(self):
        fetch = scripted_fetch(
            snapshot("pending", ["Audit queued..."]),
            snapshot("processing", ["Audit queued...", "Running UX..."]),
            snapshot("processing", ["Audit queued...", "Running UX...", "✓ UX complete."],
                     **{"UX Audit expert": {"OverallScore": 70}}),
            snapshot("completed", ["Audit queued...", "Running UX...", "✓ UX complete."],
                     **{"UX Audit expert": {"OverallScore": 70}}),
        )
        recorder = Recorder()

        await PollingJobWatcher(fetch=fetch, sleep=no_sleep).watch("job-1", *recorder.callbacks())

        statuses = [u.message for u in recorder.updates if u.kind == "status"]
        data = [(u.key, u.data) for u in recorder.updates if u.kind == "data"]
        assert statuses == ["Audit queued...", "Running UX...", "✓ UX complete."]
        assert data == [("UX Audit expert", {"OverallScore": 70})]
        assert recorder.completed[0]["resultUrl"] == "/report/job-1"
        assert recorder.errors == []

    @pytest.mark.asyncio
    async def test_failed_job_reports_error(self):
        recorder = Recorder()

        await PollingJobWatcher(fetch=scripted_fetch(snapshot("failed", ["Audit queued..."])),
                                sleep=no_sleep).watch("job-1", *recorder.callbacks())

        assert recorder.errors == ["Scraping failed: boom"]
        assert recorder.completed == []

    @pytest.mark.asyncio
    async def test_missing_job(self):
        recorder = Recorder()

        await PollingJobWatcher(fetch=scripted_fetch(None), sleep=no_sleep).watch("job-1", *recorder.callbacks())

        assert recorder.errors == ["Job not found"]

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_fetch_errors(self):
        attempts = []

        async def failing_fetch(job_id):
            attempts.append(job_id)
            raise asyncio.TimeoutError()

        recorder = Recorder()

        await PollingJobWatcher(fetch=failing_fetch, sleep=no_sleep).watch("job-1", *recorder.callbacks())

        assert len(attempts) == 5
        assert recorder.errors[0].startswith("Failed to fetch job status")


class TestStreamingWatcher:
    @pytest.mark.asyncio
    async def test_events_mapped_to_callbacks(self):
        async def stream(job_id):
            yield '{"type": "status", "message": "Audit queued..."}\n'
            yield "not json\n"
            yield "\n"
            yield '{"type": "data", "key": "url", "data": "https://shop.test"}\n'
            yield '{"type": "complete", "jobId": "job-1", "resultUrl": "/report/job-1"}\n'
            yield '{"type": "status", "message": "after the end"}\n'

        recorder = Recorder()

        await StreamingJobWatcher(open_stream=stream).watch("job-1", *recorder.callbacks())

        assert [(u.kind, u.message or u.key) for u in recorder.updates] == [
            ("status", "Audit queued..."), ("data", "url"),
        ]
        assert recorder.completed == [{"type": "complete", "jobId": "job-1", "resultUrl": "/report/job-1"}]

    @pytest.mark.asyncio
    async def test_error_event(self):
        async def stream(job_id):
            yield '{"type": "error", "message": "Scraping failed: boom"}\n'

        recorder = Recorder()

        await StreamingJobWatcher(open_stream=stream).watch("job-1", *recorder.callbacks())

        assert recorder.errors == ["Scraping failed: boom"]

    @pytest.mark.asyncio
    async def test_stream_ending_early_is_an_error(self):
        async def stream(job_id):
            yield '{"type": "status", "message": "Audit queued..."}\n'

        recorder = Recorder()

        await StreamingJobWatcher(open_stream=stream).watch("job-1", *recorder.callbacks())

        assert recorder.errors == ["Stream ended before the audit finished"]
