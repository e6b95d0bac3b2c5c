"""
CSV Ingestion Pipeline — streams delimited CDM exports into the event store.

Behavioral Contract:
- Consumes opaque byte chunks; memory is bounded by one chunk plus one batch
- A line is never split across two parse attempts and never dropped
- Every accepted row is classified before it is buffered
- The buffer is flushed with one bulk write as soon as it holds `batch_size`
  events; the write runs in a worker thread so the event loop stays free
- Progress is reported after each chunk, capped at 99; 100 is reported once,
  after the final flush
- A failing byte stream aborts the call and is reported in the result;
  batches already flushed stay persisted
- The byte source is closed whenever the call ends, including on error
- Malformed rows are skipped and listed in the result, never fatal
"""

import asyncio
import codecs
import logging
import os
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, List, Optional, Union

from cdm_triage.errors import IngestionError
from cdm_triage.ingestion.rows import HeaderSpec, MalformedRow, parse_row
from cdm_triage.models.event import CdmEvent
from cdm_triage.models.ingestion import IngestionConfig, IngestionResult, RowRejection
from cdm_triage.models.policy import PolicyConfig
from cdm_triage.random_source import RandomSource
from cdm_triage.store.event_store import EventStore

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ByteSource = Union[AsyncIterator[bytes], Iterable[bytes]]

DEFAULT_CHUNK_SIZE = 1024 * 1024


async def _as_async(source: ByteSource) -> AsyncIterator[bytes]:
    if hasattr(source, "__aiter__"):
        try:
            async for chunk in source:
                yield chunk
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
    else:
        for chunk in source:
            yield chunk


async def iter_file_chunks(
    path: Union[str, os.PathLike],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Read a file in chunks without blocking the event loop."""
    with open(path, "rb") as fh:
        while True:
            chunk = await asyncio.to_thread(fh.read, chunk_size)
            if not chunk:
                break
            yield chunk


class _IngestionRun:
    """State owned by a single `ingest` call."""

    def __init__(self, pipeline: "CsvIngestionPipeline"):
        self.pipeline = pipeline
        self.now = pipeline.clock()
        self.id_prefix = f"IMP-{int(self.now.timestamp() * 1000)}"
        self.decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
        self.header: Optional[HeaderSpec] = None
        self.leftover = ""
        self.buffer: List[CdmEvent] = []
        self.line_number = 0
        self.data_index = 0
        self.result = IngestionResult()

    def feed(self, chunk: bytes) -> List[str]:
        """Decode a chunk and return the complete lines it finishes."""
        text = self.leftover + self.decoder.decode(chunk)
        lines = text.split("\n")
        self.leftover = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def finish(self) -> List[str]:
        tail = (self.leftover + self.decoder.decode(b"", final=True)).rstrip("\r")
        self.leftover = ""
        return [tail] if tail.strip() else []

    async def handle_line(self, line: str) -> None:
        self.line_number += 1
        if self.header is None:
            if line.strip():
                self.header = HeaderSpec.sniff(line)
                log.debug(
                    "Sniffed header %r with delimiter %r",
                    self.header.headers, self.header.delimiter,
                )
            return

        fallback_id = f"{self.id_prefix}-{self.data_index}"
        self.data_index += 1
        try:
            event = parse_row(
                line,
                self.header,
                self.pipeline.policy,
                self.pipeline.rng,
                self.now,
                fallback_id,
            )
        except MalformedRow as exc:
            self.reject(str(exc))
            return
        if event is None:
            return

        self.buffer.append(event)
        if len(self.buffer) >= self.pipeline.config.batch_size:
            await self.flush()

    def reject(self, reason: str) -> None:
        self.result.rejected_total += 1
        if len(self.result.rejected) < self.pipeline.config.max_rejections_reported:
            self.result.rejected.append(
                RowRejection(line_number=self.line_number, reason=reason)
            )

    async def flush(self) -> None:
        if not self.buffer:
            return
        batch, self.buffer = self.buffer, []
        try:
            await asyncio.to_thread(self.pipeline.store.bulk_upsert, batch)
        except Exception as exc:
            raise IngestionError(
                f"Failed to write batch {self.result.batches + 1} "
                f"({len(batch)} events)"
            ) from exc
        self.result.batches += 1
        self.result.count += len(batch)
        log.debug("Flushed batch %d (%d events)", self.result.batches, len(batch))


class CsvIngestionPipeline:
    """
    Streaming importer for delimited conjunction exports.

    The first line is the header. Its delimiter (tab, then semicolon, else
    comma) applies to the whole file, and its tokens are matched by
    substring so that heterogeneous vendor schemas are accepted.
    """

    def __init__(
        self,
        store: EventStore,
        policy: PolicyConfig,
        config: Optional[IngestionConfig] = None,
        random_source: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.policy = policy
        self.config = config or IngestionConfig()
        self.rng = random_source or RandomSource()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest(
        self,
        byte_stream: ByteSource,
        total_bytes: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionResult:
        """
        Import every row of `byte_stream`.

        `total_bytes` is only used for progress reporting. Raises
        IngestionError if the store rejects a batch.
        """
        run = _IngestionRun(self)
        processed = 0
        last_progress = 0
        chunks = _as_async(byte_stream)
        log.info("Starting ingestion (%s bytes)", total_bytes if total_bytes else "unknown")

        try:
            while True:
                try:
                    chunk = await chunks.__anext__()
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    log.warning(
                        "Ingestion aborted after %d events: stream read failed: %s",
                        run.result.count, exc,
                    )
                    run.result.error = f"{type(exc).__name__}: {exc}"
                    return run.result

                processed += len(chunk)
                for line in run.feed(chunk):
                    await run.handle_line(line)

                if total_bytes:
                    progress = min(99, round(processed / total_bytes * 100))
                else:
                    progress = 0
                if on_progress is not None and progress >= last_progress:
                    last_progress = progress
                    on_progress(progress)
        finally:
            await chunks.aclose()

        for line in run.finish():
            await run.handle_line(line)
        await run.flush()

        log.info(
            "Ingestion complete: %d events in %d batches, %d rows rejected",
            run.result.count, run.result.batches, run.result.rejected_total,
        )
        if on_progress is not None:
            on_progress(100)
        return run.result

    async def ingest_file(
        self,
        path: Union[str, os.PathLike],
        on_progress: Optional[ProgressCallback] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> IngestionResult:
        """Import a file from disk, sizing progress from the file length."""
        total = os.path.getsize(path)
        return await self.ingest(iter_file_chunks(path, chunk_size), total, on_progress)
