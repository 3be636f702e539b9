"""Concurrent upload of byte ranges of one file to presigned destinations."""

from asc_transfer.cancel import CancelToken
from asc_transfer.errors import ConfigurationError
from asc_transfer.errors import OperationCancelled
from asc_transfer.errors import UploadError
from asc_transfer.retry import execute_with_retry
from asc_transfer.transport import check_response
from asc_transfer.transport import HTTPTransport
from asc_transfer.transport import sanitize_url_for_log
from dataclasses import dataclass

import logging
import os
import queue
import stat
import threading


logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class UploadChunk:
    """One contiguous byte range of the source file and where to send it."""

    method: str
    url: str
    length: int
    offset: int
    headers: tuple = ()

    @classmethod
    def from_dict(cls, data):
        """Build a chunk from an upload operation of the provider's API."""
        headers = tuple(
            (header["name"], header["value"])
            for header in data.get("requestHeaders") or ()
        )
        return cls(
            method=data.get("method") or "PUT",
            url=data.get("url") or "",
            length=int(data.get("length") or 0),
            offset=int(data.get("offset") or 0),
            headers=headers,
        )

    @property
    def http_method(self):
        return (self.method or "").strip().upper() or "PUT"


class _FirstFailure:
    """Records the first failure only; later ones are dropped."""

    def __init__(self, on_set):
        self._lock = threading.Lock()
        self._on_set = on_set
        self.error = None

    def set(self, error):
        with self._lock:
            if self.error is not None:
                return False
            self.error = error
        self._on_set()
        return True


def _validate(chunks, concurrency, total_size):
    if not chunks:
        raise ConfigurationError("no upload operations provided")
    if concurrency < 1:
        raise ConfigurationError("upload concurrency must be at least 1")
    for index, chunk in enumerate(chunks):
        if not (chunk.url or "").strip():
            raise ConfigurationError(f"upload operation {index} has empty URL")
        if chunk.offset < 0:
            raise ConfigurationError(f"upload operation {index} has negative offset")
        if chunk.length <= 0:
            raise ConfigurationError(
                f"upload operation {index} has non-positive length"
            )
        if total_size is not None and chunk.offset + chunk.length > total_size:
            raise ConfigurationError(f"upload operation {index} exceeds file size")


def _iter_range(fd, offset, length, cancel):
    """Yield ``length`` bytes from ``offset`` without moving a shared cursor."""
    remaining = length
    position = offset
    while remaining > 0:
        cancel.raise_if_cancelled()
        block = os.pread(fd, min(READ_BLOCK_SIZE, remaining), position)
        if not block:
            raise OSError(f"unexpected end of file at byte {position}")
        remaining -= len(block)
        position += len(block)
        yield block


def _upload_chunk(transport, fd, index, chunk, policy, cancel, timeout):
    def attempt():
        headers = [(name, value) for name, value in chunk.headers]
        headers.append(("Content-Length", str(chunk.length)))
        response = transport.request(
            chunk.http_method,
            chunk.url,
            content=_iter_range(fd, chunk.offset, chunk.length, cancel),
            headers=headers,
            timeout=timeout,
        )
        check_response(response)

    execute_with_retry(attempt, policy, cancel=cancel)
    logger.debug(
        "Uploaded chunk %d (%d bytes at %d) to %s",
        index,
        chunk.length,
        chunk.offset,
        sanitize_url_for_log(chunk.url),
    )


def upload_file(
    path,
    total_size,
    chunks,
    concurrency=1,
    transport=None,
    policy=None,
    cancel=None,
    timeout=None,
):
    """Upload every chunk of ``path`` with at most ``concurrency`` in flight.

    All chunks are validated before the file is opened or any request is
    made. Each chunk is retried on its own; the first permanent failure
    stops the remaining workers and is raised as ``UploadError`` naming the
    chunk index. Chunks may complete in any order. A cancel or the first
    failure returns at once, without waiting for requests still in flight.
    """
    chunks = list(chunks)
    _validate(chunks, concurrency, total_size)

    source = _SharedDescriptor(os.open(path, os.O_RDONLY))
    try:
        info = os.fstat(source.fd)
        if stat.S_ISDIR(info.st_mode):
            raise ConfigurationError(f"path {path!r} is a directory")
        if total_size is None:
            _validate(chunks, concurrency, info.st_size)
        owned = HTTPTransport() if transport is None else None
        try:
            _run_workers(
                source,
                chunks,
                min(concurrency, len(chunks)),
                transport or owned,
                policy,
                cancel,
                timeout,
            )
        finally:
            if owned is not None:
                owned.close()
    finally:
        source.release()


class _SharedDescriptor:
    """A read-only descriptor closed when its last user releases it.

    Workers abandoned after a cancel may still be reading; they hold their
    own reference so the descriptor outlives the call that opened it.
    """

    def __init__(self, fd):
        self.fd = fd
        self._users = 1
        self._lock = threading.Lock()

    def acquire(self):
        with self._lock:
            self._users += 1

    def release(self):
        with self._lock:
            self._users -= 1
            if self._users:
                return
        os.close(self.fd)


def _run_workers(source, chunks, workers, transport, policy, cancel, timeout):
    scope = cancel.child() if cancel is not None else CancelToken()
    failure = _FirstFailure(lambda: scope.cancel("cancelled after sibling failure"))

    tasks = queue.SimpleQueue()
    for task in enumerate(chunks):
        tasks.put(task)

    # Set when every worker has exited or the scope is cancelled, whichever
    # comes first. Workers still blocked in a request are not waited for.
    finished = threading.Event()
    scope.on_cancel(finished.set)
    remaining = workers
    remaining_lock = threading.Lock()

    def worker():
        nonlocal remaining
        try:
            while not scope.cancelled:
                try:
                    index, chunk = tasks.get_nowait()
                except queue.Empty:
                    return
                try:
                    _upload_chunk(
                        transport, source.fd, index, chunk, policy, scope, timeout
                    )
                except OperationCancelled:
                    return
                except Exception as e:
                    logger.debug("Upload of chunk %d failed: %s", index, e)
                    failure.set(UploadError(index, e))
                    return
        finally:
            source.release()
            with remaining_lock:
                remaining -= 1
                last = remaining == 0
            if last:
                finished.set()

    for n in range(workers):
        source.acquire()
        threading.Thread(target=worker, name=f"upload-worker-{n}", daemon=True).start()
    finished.wait()

    if failure.error is not None:
        raise failure.error from failure.error.cause
    if scope.cancelled:
        raise OperationCancelled("upload cancelled")
