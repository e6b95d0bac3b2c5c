"""Tests for the streaming CSV ingestion pipeline."""

import asyncio
import threading
from datetime import datetime, timezone
from typing import List

import pytest

from cdm_triage.errors import IngestionError
from cdm_triage.ingestion.pipeline import CsvIngestionPipeline
from cdm_triage.models.event import TriageLane
from cdm_triage.models.ingestion import IngestionConfig
from cdm_triage.models.policy import PolicyConfig
from cdm_triage.random_source import RandomSource
from cdm_triage.store.event_store import InMemoryEventStore

NOW = datetime(2023, 12, 31, 12, 0, 0, tzinfo=timezone.utc)

POLICY = PolicyConfig(
    pc_red_threshold=1e-4,
    eta_threshold=10,
    tangency_threshold=0.97,
    conditioning_threshold=5.0,
    warning_time_threshold=24,
)

HEADER = "id,object1,object2,tca,miss_distance,pc\n"


def _make_csv(rows: int) -> bytes:
    lines = [HEADER]
    for i in range(rows):
        lines.append(f"CDM-{i},SAT-{i % 7},DEB-{i % 11},2024-01-01 10:00:00,{100 + i},1e-6\n")
    return "".join(lines).encode("utf-8")


def _chunks(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def _make_pipeline(store, batch_size: int = 1000, seed: int = 99) -> CsvIngestionPipeline:
    return CsvIngestionPipeline(
        store=store,
        policy=POLICY,
        config=IngestionConfig(batch_size=batch_size),
        random_source=RandomSource(seed),
        clock=lambda: NOW,
    )


def _ingest(pipeline, chunks, total=None, progress=None):
    if total is None:
        total = sum(len(c) for c in chunks)
    return asyncio.run(pipeline.ingest(chunks, total, progress))


class RecordingStore(InMemoryEventStore):
    """Store that logs every write into a shared timeline."""

    def __init__(self, timeline: list):
        super().__init__()
        self.timeline = timeline

    def bulk_upsert(self, events):
        events = list(events)
        super().bulk_upsert(events)
        self.timeline.append(("flush", len(events)))


class FailingStore(InMemoryEventStore):
    def bulk_upsert(self, events):
        raise RuntimeError("disk full")


class ThreadRecordingStore(InMemoryEventStore):
    """Store that remembers which thread each write ran on."""

    def __init__(self):
        super().__init__()
        self.write_threads = []

    def bulk_upsert(self, events):
        self.write_threads.append(threading.get_ident())
        super().bulk_upsert(events)


class TestScenarios:
    def test_single_row_import(self):
        store = InMemoryEventStore()
        data = (
            b"id,object1,object2,tca,miss_distance,pc\n"
            b"CDM-1,SAT-A,SAT-B,2024-01-01 10:00:00,500,0.0002"
        )
        result = _ingest(_make_pipeline(store), [data])

        assert result.count == 1
        assert result.error is None
        event = store.get("CDM-1")
        assert event.tca == datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        assert event.model_dump(mode="json")["tca"].startswith("2024-01-01T10:00:00")
        assert event.miss_distance == 500
        assert event.pc_analytic == 0.0002
        assert event.lane == TriageLane.MC_REQUIRED

    def test_ten_thousand_rows_ten_flushes(self):
        store = InMemoryEventStore()
        data = _make_csv(10_000)
        progress = []
        result = _ingest(_make_pipeline(store), _chunks(data, 64 * 1024), progress=progress.append)

        assert result.count == 10_000
        assert result.batches == 10
        assert store.flush_sizes == [1000] * 10
        assert store.count() == 10_000
        assert progress[-1] == 100
        assert progress.count(100) == 1
        assert progress == sorted(progress)
        assert all(0 <= p <= 100 for p in progress)


class TestStreaming:
    @pytest.mark.parametrize("chunk_size", [1, 7, 64, 1000])
    def test_chunking_does_not_change_result(self, chunk_size):
        data = (
            "id;object1;object2;tca;miss;speed;prob\r\n"
            "A-1;ÉCLAIR-1;DEB-Ω;2024-02-01 00:00:00;120.5;7100;0.002\r\n"
            "A-2;SAT-2;DEB-2;2024-02-01T06:30:00Z;50;7200;1e-7\r\n"
            "\r\n"
            "A-3;SAT-3;DEB-3;garbage;x;y;z\r\n"
            "broken\r\n"
            "A-4;SAT-4;DEB-4;01/02/2024 12:00:00;1;2;0.5"
        ).encode("utf-8")

        whole_store = InMemoryEventStore()
        whole = _ingest(_make_pipeline(whole_store), [data])

        split_store = InMemoryEventStore()
        split = _ingest(_make_pipeline(split_store), _chunks(data, chunk_size))

        assert whole.count == split.count == 4
        assert whole.rejected == split.rejected
        by_id = lambda events: sorted(events, key=lambda e: e.id)
        assert by_id(whole_store.fetch_all()) == by_id(split_store.fetch_all())
        assert split_store.get("A-1").object1 == "ÉCLAIR-1"
        assert split_store.get("A-1").object2 == "DEB-Ω"

    def test_split_inside_header(self):
        store = InMemoryEventStore()
        data = _make_csv(5)
        result = _ingest(_make_pipeline(store), [data[:5], data[5:]])
        assert result.count == 5

    def test_no_trailing_newline(self):
        store = InMemoryEventStore()
        result = _ingest(_make_pipeline(store), [b"id,object1,object2\nX,A,B"])
        assert result.count == 1
        assert store.get("X").object2 == "B"

    def test_sync_and_async_sources(self):
        data = _make_csv(3)

        async def source():
            for chunk in _chunks(data, 10):
                yield chunk

        store = InMemoryEventStore()
        result = asyncio.run(_make_pipeline(store).ingest(source(), len(data)))
        assert result.count == 3

    def test_ingest_file(self, tmp_path):
        path = tmp_path / "cdms.csv"
        path.write_bytes(_make_csv(2500))
        store = InMemoryEventStore()
        progress = []

        result = asyncio.run(
            _make_pipeline(store).ingest_file(path, progress.append, chunk_size=4096)
        )
        assert result.count == 2500
        assert store.flush_sizes == [1000, 1000, 500]
        assert progress[-1] == 100


class TestBackpressure:
    def test_buffer_never_exceeds_batch_size(self):
        store = InMemoryEventStore()
        # One huge chunk holding many batches worth of rows.
        result = _ingest(_make_pipeline(store, batch_size=3), [_make_csv(10)])
        assert store.flush_sizes == [3, 3, 3, 1]
        assert result.batches == 4

    def test_completion_reported_after_last_flush(self):
        timeline = []
        store = RecordingStore(timeline)
        data = _make_csv(25)
        _ingest(
            _make_pipeline(store, batch_size=10),
            _chunks(data, 100),
            progress=lambda p: timeline.append(("progress", p)),
        )
        assert timeline[-1] == ("progress", 100)
        assert timeline[-2] == ("flush", 5)
        assert [e for e in timeline if e == ("progress", 100)] == [("progress", 100)]

    def test_yields_to_event_loop_between_batches(self):
        store = InMemoryEventStore()
        ticks = []

        async def main():
            async def observer():
                while True:
                    ticks.append(store.count())
                    await asyncio.sleep(0)

            task = asyncio.create_task(observer())
            await _make_pipeline(store, batch_size=100).ingest([_make_csv(500)], None)
            task.cancel()

        asyncio.run(main())
        # The observer ran while batches were still being written.
        assert any(0 < t < 500 for t in ticks)


class TestFailures:
    def test_empty_input(self):
        store = InMemoryEventStore()
        progress = []
        result = _ingest(_make_pipeline(store), [], total=0, progress=progress.append)
        assert result.count == 0
        assert result.error is None
        assert progress == [100]

    def test_header_only(self):
        store = InMemoryEventStore()
        result = _ingest(_make_pipeline(store), [HEADER.encode()])
        assert result.count == 0
        assert store.flush_sizes == []

    def test_malformed_rows_reported(self):
        store = InMemoryEventStore()
        data = (HEADER + "CDM-1,A,B,2024-01-01,1,0\nonly,two\nCDM-2,A,B,2024-01-01,1,0\n").encode()
        result = _ingest(_make_pipeline(store), [data])
        assert result.count == 2
        assert result.rejected_total == 1
        assert result.rejected[0].line_number == 3

    def test_rejection_report_is_capped(self):
        store = InMemoryEventStore()
        data = (HEADER + "x\n" * 250).encode()
        pipeline = _make_pipeline(store)
        pipeline.config = IngestionConfig(max_rejections_reported=10)
        result = _ingest(pipeline, [data])
        assert result.rejected_total == 250
        assert len(result.rejected) == 10

    def test_stream_failure_keeps_flushed_batches(self):
        store = InMemoryEventStore()
        data = _make_csv(1500)
        progress = []

        async def source():
            yield data
            raise OSError("connection reset")

        result = asyncio.run(
            _make_pipeline(store).ingest(source(), len(data) * 2, progress.append)
        )
        assert result.error is not None
        assert "connection reset" in result.error
        assert result.count == 1000
        assert store.count() == 1000
        assert 100 not in progress

    def test_store_failure_raises(self):
        with pytest.raises(IngestionError):
            _ingest(_make_pipeline(FailingStore(), batch_size=2), [_make_csv(5)])

    def test_store_failure_closes_byte_source(self):
        closed = []
        data = _make_csv(10)

        async def source():
            try:
                for chunk in _chunks(data, 50):
                    yield chunk
            finally:
                closed.append(True)

        with pytest.raises(IngestionError):
            asyncio.run(_make_pipeline(FailingStore(), batch_size=2).ingest(source(), len(data)))
        assert closed == [True]

    def test_file_is_closed_after_store_failure(self, tmp_path, monkeypatch):
        path = tmp_path / "cdms.csv"
        path.write_bytes(_make_csv(50))
        handles = []
        real_open = open

        def tracking_open(*args, **kwargs):
            fh = real_open(*args, **kwargs)
            handles.append(fh)
            return fh

        monkeypatch.setattr("builtins.open", tracking_open)
        pipeline = _make_pipeline(FailingStore(), batch_size=5)
        with pytest.raises(IngestionError):
            asyncio.run(pipeline.ingest_file(path, chunk_size=64))
        assert handles and all(fh.closed for fh in handles)


class TestEventLoopIsolation:
    def test_store_writes_run_off_the_event_loop_thread(self):
        store = ThreadRecordingStore()
        loop_threads = []

        async def main():
            loop_threads.append(threading.get_ident())
            return await _make_pipeline(store, batch_size=100).ingest([_make_csv(250)], None)

        result = asyncio.run(main())
        assert result.count == 250
        assert len(store.write_threads) == 3
        assert loop_threads[0] not in store.write_threads
