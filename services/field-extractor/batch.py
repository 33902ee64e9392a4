"""Bounded-concurrency batch extraction.

A fixed pool of workers pulls documents from a queue, so at most
``concurrency`` documents are in flight at any instant and a slow document
never holds back the start of the next one. Every status change is reported
per document as it happens.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from config import settings
from errors import FieldExtractorError
from extraction import TextExtractor, extract_document
from llm_client import LLMClient
from models import BatchProgress, Document, ExtractionOptions, ExtractionResult, Template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusUpdate:
    index: int
    result: ExtractionResult
    progress: BatchProgress


UpdateCallback = Callable[[StatusUpdate], None]


class _ProgressCounter:
    """Settled-document counter shared by all workers.

    Workers run on one event loop and ``advance`` never awaits, so the
    increment and the read happen as one step.
    """

    def __init__(self, total: int):
        self.total = total
        self.completed = 0

    def advance(self) -> BatchProgress:
        self.completed += 1
        return self.snapshot()

    def snapshot(self) -> BatchProgress:
        return BatchProgress(completed=self.completed, total=self.total)


class BatchRunner:
    """Fan documents out over the extraction pipeline with bounded concurrency."""

    def __init__(
        self,
        llm: LLMClient,
        concurrency: int | None = None,
        text_extractor: TextExtractor | None = None,
    ):
        self._llm = llm
        self._concurrency = concurrency if concurrency is not None else settings.BATCH_CONCURRENCY
        self._text_extractor = text_extractor
        self._background: set[asyncio.Task] = set()
        if self._concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    async def run(
        self,
        documents: list[Document],
        template: Template,
        options: ExtractionOptions | None = None,
        on_update: UpdateCallback | None = None,
        stop: asyncio.Event | None = None,
    ) -> list[ExtractionResult]:
        """Extract every document and return one result per document, in input order.

        Setting ``stop`` lets in-flight documents finish but starts no new
        ones; documents never started stay ``pending``.
        """
        results = [ExtractionResult(file_name=d.file_name) for d in documents]
        counter = _ProgressCounter(len(documents))
        if not documents:
            return results

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(documents)):
            queue.put_nowait(index)

        def emit(index: int, progress: BatchProgress) -> None:
            if on_update is not None:
                on_update(StatusUpdate(index, results[index].model_copy(deep=True), progress))

        async def worker() -> None:
            while not queue.empty():
                if stop is not None and stop.is_set():
                    return
                index = queue.get_nowait()
                result = results[index]

                result.mark_processing()
                emit(index, counter.snapshot())

                try:
                    outcome = await extract_document(
                        documents[index],
                        template,
                        self._llm,
                        options,
                        text_extractor=self._text_extractor,
                    )
                    result.mark_success(outcome)
                except FieldExtractorError as e:
                    logger.warning("Extraction failed for %s: %s", result.file_name, e.message)
                    result.mark_error(e.message)
                except Exception as e:
                    logger.exception("Unexpected error extracting %s", result.file_name)
                    result.mark_error(str(e) or type(e).__name__)

                emit(index, counter.advance())

        width = min(self._concurrency, len(documents))
        logger.info("Starting batch: %d documents, concurrency %d", len(documents), width)
        await asyncio.gather(*(worker() for _ in range(width)))

        failed = sum(1 for r in results if r.status == "error")
        logger.info(
            "Batch finished: %d/%d settled, %d failed",
            counter.completed, counter.total, failed,
        )
        return results

    async def stream(
        self,
        documents: list[Document],
        template: Template,
        options: ExtractionOptions | None = None,
    ) -> AsyncIterator[StatusUpdate]:
        """Yield status updates as they happen.

        Closing the iterator early stops new documents from starting; those
        already in flight run to completion.
        """
        updates: asyncio.Queue[StatusUpdate | None] = asyncio.Queue()
        stop = asyncio.Event()

        async def drive() -> None:
            try:
                await self.run(documents, template, options, on_update=updates.put_nowait, stop=stop)
            finally:
                updates.put_nowait(None)

        task = asyncio.create_task(drive())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        try:
            while True:
                update = await updates.get()
                if update is None:
                    break
                yield update
            await task
        finally:
            stop.set()
