"""
Processing state tracking for ingestion jobs.

Each job walks a linear state machine:

    queued → extracting_text → chunking → generating_embeddings
           → storing_chunks → completed

``failed`` is reachable from any non-terminal state. Progress never goes
backwards, reaches 100 only at ``completed``, and ``failed`` reports 0.
Terminal states are sticky: later updates for the same job are ignored.

The tracker is a pure event source. Events go to an injected ``EventSink``
(a bounded queue, a per-user pub/sub bus, or anything else); delivery is
fire-and-forget.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Optional

from .errors import InvalidTransitionError
from .schemas.job import STATUS_ORDER, ProcessingStatus, ProcessingUpdate

logger = logging.getLogger(__name__)


class EventSink(ABC):
    """Receives progress events. Must not block or raise."""

    @abstractmethod
    def publish(self, update: ProcessingUpdate) -> None:
        pass


class NullSink(EventSink):
    """Discards all events."""

    def publish(self, update: ProcessingUpdate) -> None:
        return None


class QueueSink(EventSink):
    """
    Bounded ``asyncio.Queue`` sink.

    When the queue is full the event is dropped with a warning rather than
    stalling ingestion.
    """

    def __init__(self, maxsize: int = 100):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def publish(self, update: ProcessingUpdate) -> None:
        try:
            self.queue.put_nowait(update)
        except asyncio.QueueFull:
            logger.warning(
                f"Progress queue full, dropping {update.status.value} event "
                f"for {update.document_id}"
            )


class EventBus(EventSink):
    """
    Per-user publish/subscribe fan-out.

    Each subscriber gets its own bounded queue; a slow subscriber loses
    events instead of blocking the publisher or other subscribers.
    """

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, user_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.setdefault(user_id, []).append(queue)
        logger.debug(f"Subscriber added for user {user_id}")
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._subscribers.get(user_id, []))
        return sum(len(q) for q in self._subscribers.values())

    def publish(self, update: ProcessingUpdate) -> None:
        for queue in list(self._subscribers.get(update.user_id, [])):
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full for user {update.user_id}, event dropped")


class ProcessingTracker:
    """
    Tracks active ingestion jobs and publishes their progress.

    Jobs are keyed by document id. Terminal jobs leave the active set; a
    bounded history of their final updates makes repeated terminal
    notifications idempotent.
    """

    def __init__(
        self,
        sink: Optional[EventSink] = None,
        history_size: int = 1024,
        tracer=None,
    ):
        self.sink = sink or NullSink()
        self.history_size = history_size
        self.tracer = tracer
        self._active: dict[str, ProcessingUpdate] = {}
        self._finished: OrderedDict[str, ProcessingUpdate] = OrderedDict()

    def start(self, document_id: str, user_id: str, filename: Optional[str] = None) -> "JobHandle":
        """
        Register a job in ``queued`` state and return its handle.

        Raises:
            InvalidTransitionError: If the id belongs to an active or
                recently finished job
        """
        if document_id in self._active:
            raise InvalidTransitionError(f"Job {document_id} is already active")
        if document_id in self._finished:
            raise InvalidTransitionError(f"Job {document_id} has already finished")
        handle = JobHandle(self, document_id, user_id, filename)
        handle.queued()
        return handle

    def update(
        self,
        document_id: str,
        user_id: str,
        status: ProcessingStatus,
        progress: int,
        message: str = "",
        metadata: Optional[dict[str, Any]] = None,
        filename: Optional[str] = None,
    ) -> ProcessingUpdate:
        """
        Apply a transition and publish it.

        Returns:
            The published update, or the stored terminal update when the
            job has already finished

        Raises:
            InvalidTransitionError: If the status moves backwards
        """
        finished = self._finished.get(document_id)
        if finished is not None:
            logger.debug(
                f"Ignoring {status.value} for {document_id}: already {finished.status.value}"
            )
            return finished

        current = self._active.get(document_id)
        progress = max(0, min(100, int(progress)))

        if status == ProcessingStatus.FAILED:
            progress = 0
        else:
            if current is not None and current.status != ProcessingStatus.FAILED:
                if STATUS_ORDER[status] < STATUS_ORDER[current.status]:
                    raise InvalidTransitionError(
                        f"Cannot move job {document_id} from "
                        f"{current.status.value} back to {status.value}"
                    )
                progress = max(progress, current.progress)
            if status == ProcessingStatus.COMPLETED:
                progress = 100
            else:
                progress = min(progress, 99)

        update = ProcessingUpdate(
            document_id=document_id,
            user_id=user_id,
            filename=filename if filename is not None else (current.filename if current else None),
            status=status,
            progress=progress,
            message=message,
            metadata=metadata or {},
        )

        if status.is_terminal:
            self._active.pop(document_id, None)
            self._finished[document_id] = update
            while len(self._finished) > self.history_size:
                self._finished.popitem(last=False)
        else:
            self._active[document_id] = update

        logger.info(f"Job {document_id}: {status.value} ({progress}%) {message}")
        self.sink.publish(update)

        if self.tracer is not None and (current is None or current.status != status):
            self.tracer.log_job_transition(
                document_id=document_id,
                from_status=current.status.value if current else None,
                to_status=status.value,
                progress=progress,
            )

        return update

    def get_job_status(self, document_id: str) -> Optional[ProcessingUpdate]:
        """Latest update of an active job, or None once it has finished."""
        return self._active.get(document_id)

    def get_final_status(self, document_id: str) -> Optional[ProcessingUpdate]:
        """Terminal update of a recently finished job."""
        return self._finished.get(document_id)

    def get_user_jobs(self, user_id: str) -> list[ProcessingUpdate]:
        """Active jobs belonging to a user."""
        return [job for job in self._active.values() if job.user_id == user_id]

    @property
    def active_count(self) -> int:
        return len(self._active)


class JobHandle:
    """
    Step helpers bound to one job.

    Progress bands: extracting 10, chunking 25-55, embeddings 55-85,
    storing 85-99, completed 100.
    """

    def __init__(
        self,
        tracker: ProcessingTracker,
        document_id: str,
        user_id: str,
        filename: Optional[str] = None,
    ):
        self.tracker = tracker
        self.document_id = document_id
        self.user_id = user_id
        self.filename = filename

    def _emit(
        self,
        status: ProcessingStatus,
        progress: int,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ProcessingUpdate:
        return self.tracker.update(
            self.document_id,
            self.user_id,
            status,
            progress,
            message,
            metadata,
            filename=self.filename,
        )

    @staticmethod
    def _band(start: int, width: int, done: int, total: int) -> int:
        if total <= 0:
            return start
        return start + (width * min(done, total)) // total

    def queued(self) -> ProcessingUpdate:
        return self._emit(ProcessingStatus.QUEUED, 0, "Document queued for processing")

    def extracting_text(self, file_type: Optional[str] = None) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.EXTRACTING_TEXT,
            10,
            f"Extracting text from {file_type or 'document'}",
            {"file_type": file_type} if file_type else None,
        )

    def chunking(self, text_length: int) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.CHUNKING,
            25,
            "Splitting text into chunks",
            {"text_length": text_length},
        )

    def chunking_progress(self, done: int, total: int) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.CHUNKING,
            self._band(25, 30, done, total),
            f"Created {done} of {total} chunks",
            {"chunks_processed": done, "total_chunks": total},
        )

    def generating_embeddings(self, total: int) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.GENERATING_EMBEDDINGS,
            55,
            f"Generating embeddings for {total} chunks",
            {"total_chunks": total},
        )

    def embedding_progress(self, done: int, total: int) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.GENERATING_EMBEDDINGS,
            self._band(55, 30, done, total),
            f"Embedded {done} of {total} chunks",
            {"chunks_processed": done, "total_chunks": total},
        )

    def storing_chunks(self, total: int) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.STORING_CHUNKS,
            85,
            f"Storing {total} chunks",
            {"total_chunks": total},
        )

    def storing_progress(self, done: int, total: int) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.STORING_CHUNKS,
            self._band(85, 14, done, total),
            f"Stored {done} of {total} chunks",
            {"chunks_processed": done, "total_chunks": total},
        )

    def completed(
        self,
        chunks_count: int,
        processing_time_ms: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ProcessingUpdate:
        meta = {"total_chunks": chunks_count}
        if processing_time_ms is not None:
            meta["processing_time_ms"] = processing_time_ms
        meta.update(metadata or {})
        return self._emit(
            ProcessingStatus.COMPLETED,
            100,
            f"Processing completed: {chunks_count} chunks",
            meta,
        )

    def failed(self, error: str) -> ProcessingUpdate:
        return self._emit(
            ProcessingStatus.FAILED,
            0,
            f"Processing failed: {error}",
            {"error": error},
        )
