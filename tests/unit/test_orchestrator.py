"""
Tests for run orchestration: skip, dispatch, drain, retry and statistics.
"""

import asyncio

import pytest

from chapterscraper.errors import ContentExtractionError, ExtractionFailure, InputValidationError, TaskExecutionError
from chapterscraper.models import ChapterRecord, OutcomeRecord
from chapterscraper.orchestrator import Orchestrator
from chapterscraper.progress import EventKind, ProgressReporter


class EventSink:
    def __init__(self):
        self.events = []

    def start(self, total):
        pass

    def on_event(self, event):
        self.events.append(event)

    def update(self, stats, in_flight):
        pass

    def finish(self, stats):
        pass


def extraction_error(key):
    return ContentExtractionError(
        ExtractionFailure.TOO_SHORT, "too short", url=f"https://novel.example.com/chapter-{key}"
    )


@pytest.fixture
def make_orchestrator(make_config, store, recording_sleep):
    def _make(worker, progress=None, stop_event=None, **overrides):
        config = make_config(**overrides)
        return Orchestrator(
            config, worker, store, progress=progress, sleep=recording_sleep, stop_event=stop_event
        )

    return _make


@pytest.mark.unit
class TestStatistics:
    @pytest.mark.asyncio
    async def test_counts_add_up_after_mixed_run(
        self, make_orchestrator, scripted_worker, make_records, make_http_error, output_dir
    ):
        (output_dir / "chapter_5.txt").write_text("already here")
        worker = scripted_worker(
            {
                "2": [make_http_error(404, "2")],
                "3": [make_http_error(503, "3"), 300],
                "4": [make_http_error(429, "4")] * 4,
                "6": [extraction_error("6")],
            }
        )
        records = make_records("1", "2", "3", "4", "5", "6") + [ChapterRecord("ftp://bad.example/7", "7")]
        report = await make_orchestrator(worker).run(records)
        stats = report.statistics

        assert stats.total == 7
        assert stats.existing == 1
        assert stats.success == 2  # 1 and 3
        assert stats.permanent_errors == 4  # 2, 4, 6 and the invalid record
        assert stats.success + stats.permanent_errors + stats.existing == stats.total
        assert stats.recoverable_errors == 5  # 3 once, 4 four times
        assert stats.retries == 4
        assert not report.stopped_early
        assert {o.item.key for o in report.permanent_failures} == {"2", "4", "6"}
        assert len(report.invalid_records) == 1
        assert isinstance(report.invalid_records[0], InputValidationError)

    @pytest.mark.asyncio
    async def test_all_success(self, make_orchestrator, scripted_worker, make_records, output_dir):
        worker = scripted_worker()
        report = await make_orchestrator(worker).run(make_records("1", "2", "3"))
        assert report.statistics.success == 3
        assert report.statistics.permanent_errors == 0
        assert sorted(p.name for p in output_dir.iterdir()) == ["chapter_1.txt", "chapter_2.txt", "chapter_3.txt"]

    @pytest.mark.asyncio
    async def test_empty_input(self, make_orchestrator, scripted_worker):
        report = await make_orchestrator(scripted_worker()).run([])
        assert report.statistics.total == 0
        assert report.statistics.completion_rate == 1.0


@pytest.mark.unit
class TestSkipping:
    @pytest.mark.asyncio
    async def test_existing_output_is_never_fetched(
        self, make_orchestrator, scripted_worker, make_records, output_dir
    ):
        (output_dir / "chapter_12.txt").write_text("chapter twelve")
        worker = scripted_worker()
        sink = EventSink()
        report = await make_orchestrator(worker, progress=ProgressReporter(sink)).run(make_records("11", "12", "13"))

        assert "12" not in worker.calls
        assert report.statistics.existing == 1
        assert report.statistics.success == 2
        skips = [e.message for e in sink.events if e.kind is EventKind.SKIP]
        assert skips == ["Skipping existing file: chapter_12.txt"]

    @pytest.mark.asyncio
    async def test_empty_existing_file_is_refetched(
        self, make_orchestrator, scripted_worker, make_records, output_dir
    ):
        (output_dir / "chapter_1.txt").write_text("")
        worker = scripted_worker()
        report = await make_orchestrator(worker).run(make_records("1"))
        assert worker.calls == ["1"]
        assert report.statistics.existing == 0


@pytest.mark.unit
class TestDispatch:
    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, make_orchestrator, scripted_worker, make_records):
        worker = scripted_worker(delay=0.01)
        orchestrator = make_orchestrator(worker, max_concurrent_tasks=2)
        await orchestrator.run(make_records(*[str(i) for i in range(10)]))
        assert worker.peak <= 2
        assert orchestrator.pool.peak_in_flight <= 2

    @pytest.mark.asyncio
    async def test_delay_after_each_dispatch(
        self, make_orchestrator, scripted_worker, make_records, recording_sleep, output_dir
    ):
        (output_dir / "chapter_2.txt").write_text("done")
        await make_orchestrator(scripted_worker(), task_delay_ms=300).run(make_records("1", "2", "3"))
        assert recording_sleep.delays == [0.3, 0.3]

    @pytest.mark.asyncio
    async def test_crashing_worker_is_a_permanent_failure(self, make_orchestrator, make_records):
        async def worker(item):
            raise RuntimeError("unexpected")

        report = await make_orchestrator(worker).run(make_records("1", "2"))
        assert report.statistics.permanent_errors == 2
        assert report.statistics.retries == 0
        assert all(isinstance(o.error, TaskExecutionError) for o in report.permanent_failures)

    @pytest.mark.asyncio
    async def test_stop_event_prevents_dispatch(self, make_orchestrator, scripted_worker, make_records):
        stop = asyncio.Event()
        stop.set()
        worker = scripted_worker()
        report = await make_orchestrator(worker, stop_event=stop).run(make_records("1", "2"))
        assert worker.calls == []
        assert report.stopped_early

    @pytest.mark.asyncio
    async def test_stop_mid_run_drains_in_flight(self, make_orchestrator, make_records):
        stop = asyncio.Event()
        calls = []

        async def worker(item):
            calls.append(item.key)
            stop.set()
            return OutcomeRecord.success(item, 10)

        report = await make_orchestrator(worker, stop_event=stop).run(make_records("1", "2", "3"))
        assert calls == ["1"]
        assert report.statistics.success == 1
        assert report.stopped_early

    @pytest.mark.asyncio
    async def test_progress_updates_during_drain(self, make_orchestrator, make_records):
        class UpdateSink(EventSink):
            def __init__(self):
                super().__init__()
                self.updates = []

            def update(self, stats, in_flight):
                self.updates.append((stats.success, in_flight))

        async def worker(item):
            if item.key == "2":
                await asyncio.sleep(0.05)
            return OutcomeRecord.success(item, 10)

        sink = UpdateSink()
        await make_orchestrator(worker, progress=ProgressReporter(sink), max_concurrent_tasks=2).run(
            make_records("1", "2")
        )
        assert (1, 1) in sink.updates
        assert sink.updates[-1] == (2, 0)


@pytest.mark.unit
class TestRetries:
    @pytest.mark.asyncio
    async def test_recoverable_item_retried_at_most_max_retries(
        self, make_orchestrator, scripted_worker, make_records, make_http_error, recording_sleep
    ):
        worker = scripted_worker({"1": [make_http_error(503)] * 10})
        report = await make_orchestrator(worker, max_retries=3, retry_base_delay_secs=1.0).run(make_records("1"))

        assert worker.calls == ["1"] * 4
        assert recording_sleep.delays == [0.05, 1.0, 2.0, 4.0]
        assert report.statistics.retries == 3
        assert report.statistics.recoverable_errors == 4
        assert report.statistics.permanent_errors == 1

    @pytest.mark.asyncio
    async def test_no_retries_configured(self, make_orchestrator, scripted_worker, make_records, make_http_error):
        worker = scripted_worker({"1": [make_http_error(None)]})
        report = await make_orchestrator(worker, max_retries=0).run(make_records("1"))
        assert worker.calls == ["1"]
        assert report.statistics.permanent_errors == 1
        assert report.statistics.retries == 0

    @pytest.mark.asyncio
    async def test_permanent_failures_are_not_retried(
        self, make_orchestrator, scripted_worker, make_records, make_http_error
    ):
        worker = scripted_worker({"1": [make_http_error(404)], "2": [extraction_error("2")]})
        report = await make_orchestrator(worker).run(make_records("1", "2"))
        assert sorted(worker.calls) == ["1", "2"]
        assert report.statistics.retries == 0

    @pytest.mark.asyncio
    async def test_recovery_on_retry(self, make_orchestrator, scripted_worker, make_records, make_http_error):
        worker = scripted_worker({"1": [make_http_error(None, timed_out=True), make_http_error(502), 200]})
        report = await make_orchestrator(worker).run(make_records("1"))
        assert report.statistics.success == 1
        assert report.statistics.permanent_errors == 0
        assert report.statistics.retries == 2


@pytest.mark.unit
class TestRecommendations:
    @pytest.mark.asyncio
    async def test_healthy_run(self, make_orchestrator, scripted_worker, make_records):
        report = await make_orchestrator(scripted_worker()).run(make_records("1", "2"))
        assert report.recommendations == ["Current settings work well for this source."]

    @pytest.mark.asyncio
    async def test_rate_limiting_and_error_rate(
        self, make_orchestrator, scripted_worker, make_records, make_http_error
    ):
        worker = scripted_worker({"1": [make_http_error(429)] * 4})
        report = await make_orchestrator(worker).run(make_records("1"))
        text = " ".join(report.recommendations)
        assert "High error rate" in text
        assert "Increase task_delay_ms" in text

    @pytest.mark.asyncio
    async def test_extraction_failures(self, make_orchestrator, scripted_worker, make_records):
        worker = scripted_worker({"1": [extraction_error("1")], "2": [extraction_error("2")]})
        report = await make_orchestrator(worker).run(make_records("1", "2", "3"))
        assert any("selector chain" in advice for advice in report.recommendations)

    @pytest.mark.asyncio
    async def test_timeouts(self, make_orchestrator, scripted_worker, make_records, make_http_error):
        worker = scripted_worker({"1": [make_http_error(None, timed_out=True), 100]})
        report = await make_orchestrator(worker).run(make_records("1"))
        assert any("request_timeout_secs" in advice for advice in report.recommendations)
