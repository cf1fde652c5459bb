"""Bounded-concurrency execution of chunk uploads, downloads and deletes."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Hashable, List, Optional, Sequence

from common.constants import MAX_CONCURRENT_TRANSFERS, PROGRESS_RENDER_INTERVAL_SECONDS
from common.logging_config import get_logger
from engine.backend import StorageBackend

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransferResult:
    """
    Terminal outcome of one chunk transfer.

    A result with an error may still carry a remote_id when the bytes reached
    the account but a follow-up step failed; the caller must clean it up.
    """
    part_number: int
    remote_id: Optional[str] = None
    bytes_transferred: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class UploadJob:
    part_number: int
    path: Path
    remote_name: str
    folder_id: str
    backend: StorageBackend
    size_bytes: int
    account_id: str = ""
    on_success: Optional[Callable[[str], None]] = None
    on_failure: Optional[Callable[[], None]] = None


@dataclass
class DownloadJob:
    part_number: int
    remote_id: str
    dest_path: Path
    backend: StorageBackend
    size_bytes: int = 0
    account_id: str = ""


@dataclass
class DeleteJob:
    part_number: int
    remote_id: str
    backend: StorageBackend
    account_id: str = ""


@dataclass(frozen=True)
class ProgressState:
    """Snapshot handed to the progress renderer."""
    label: str
    transferred_bytes: int
    total_bytes: int
    elapsed_seconds: float
    finished: bool = False
    succeeded: bool = True

    @property
    def bytes_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.transferred_bytes / self.elapsed_seconds


ProgressRenderer = Callable[[ProgressState], None]


class ProgressAggregator:
    """
    Folds per-transfer cumulative byte counts into one counter.

    The counter is updated under a short lock. Rendering is fire-and-forget:
    a reporter that finds another thread rendering skips its render instead
    of waiting, so transfers are never slowed by output.
    """

    def __init__(
        self,
        label: str,
        total_bytes: int,
        renderer: Optional[ProgressRenderer] = None,
        min_interval: float = PROGRESS_RENDER_INTERVAL_SECONDS,
    ):
        self.label = label
        self.total_bytes = total_bytes
        self._renderer = renderer
        self._min_interval = min_interval
        self._state_lock = threading.Lock()
        self._render_lock = threading.Lock()
        self._per_transfer: Dict[Hashable, int] = {}
        self._transferred = 0
        self._started = time.monotonic()
        self._last_render = 0.0

    @property
    def transferred_bytes(self) -> int:
        with self._state_lock:
            return self._transferred

    def report(self, key: Hashable, cumulative_bytes: int) -> None:
        """Record that transfer `key` has now moved cumulative_bytes in total."""
        with self._state_lock:
            previous = self._per_transfer.get(key, 0)
            if cumulative_bytes <= previous:
                return
            self._per_transfer[key] = cumulative_bytes
            self._transferred += cumulative_bytes - previous

        self._try_render(force=False)

    def callback_for(self, key: Hashable) -> Callable[[int], None]:
        return lambda cumulative: self.report(key, cumulative)

    def finish(self, succeeded: bool = True) -> None:
        """Render the final state; waits for any in-progress render."""
        self._try_render(force=True, finished=True, succeeded=succeeded)

    def _snapshot(self, finished: bool, succeeded: bool) -> ProgressState:
        with self._state_lock:
            transferred = self._transferred
        return ProgressState(
            label=self.label,
            transferred_bytes=transferred,
            total_bytes=self.total_bytes,
            elapsed_seconds=time.monotonic() - self._started,
            finished=finished,
            succeeded=succeeded,
        )

    def _try_render(self, force: bool, finished: bool = False, succeeded: bool = True) -> None:
        if self._renderer is None:
            return
        if not self._render_lock.acquire(blocking=force):
            return
        try:
            now = time.monotonic()
            if not force and now - self._last_render < self._min_interval:
                return
            self._last_render = now
            self._renderer(self._snapshot(finished, succeeded))
        except Exception as e:
            logger.debug(f"Progress renderer raised: {e}")
        finally:
            self._render_lock.release()


class TransferScheduler:
    """
    Runs chunk transfers on a fixed-size worker pool.

    Every job is submitted up front in part order; at most max_concurrent run
    at once and the rest wait for a free worker. A batch only returns after
    every job reached a terminal state, so callers always see the complete
    failure set.
    """

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_TRANSFERS,
        renderer: Optional[ProgressRenderer] = None,
    ):
        """
        Args:
            max_concurrent: Number of concurrent transfer slots
            renderer: Optional progress renderer (e.g., the CLI progress line)
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.renderer = renderer

    def run_uploads(self, jobs: Sequence[UploadJob], label: str = "Uploading") -> List[TransferResult]:
        progress = ProgressAggregator(label, sum(j.size_bytes for j in jobs), self.renderer)
        return self._run(jobs, lambda job: self._upload(job, progress), progress)

    def run_downloads(self, jobs: Sequence[DownloadJob], label: str = "Downloading") -> List[TransferResult]:
        progress = ProgressAggregator(label, sum(j.size_bytes for j in jobs), self.renderer)
        return self._run(jobs, lambda job: self._download(job, progress), progress)

    def run_deletes(self, jobs: Sequence[DeleteJob]) -> List[TransferResult]:
        return self._run(jobs, self._delete, None)

    def _run(self, jobs, worker, progress: Optional[ProgressAggregator]) -> List[TransferResult]:
        if not jobs:
            return []

        workers = min(self.max_concurrent, len(jobs))
        logger.debug(f"Scheduling {len(jobs)} transfer(s) on {workers} worker(s)")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ddrive-transfer") as pool:
            futures = [pool.submit(self._guarded, worker, job) for job in jobs]
            wait(futures)

        results = sorted((f.result() for f in futures), key=lambda r: r.part_number)
        failed = [r for r in results if not r.succeeded]

        if progress is not None:
            progress.finish(succeeded=not failed)

        if failed:
            logger.warning(f"{len(failed)}/{len(results)} transfer(s) failed")
        else:
            logger.debug(f"All {len(results)} transfer(s) succeeded")
        return results

    @staticmethod
    def _guarded(worker, job) -> TransferResult:
        """Turn any exception raised by a worker into a failure result."""
        try:
            return worker(job)
        except Exception as e:
            logger.error(f"Transfer of chunk {job.part_number} failed: {e}")
            return TransferResult(part_number=job.part_number, error=str(e) or type(e).__name__)

    @staticmethod
    def _upload(job: UploadJob, progress: ProgressAggregator) -> TransferResult:
        try:
            data = job.path.read_bytes()
            remote_id = job.backend.upload_chunk(
                data, job.remote_name, job.folder_id, progress.callback_for(job.part_number)
            )
        except Exception:
            if job.on_failure is not None:
                job.on_failure()
            raise

        progress.report(job.part_number, len(data))

        if job.on_success is not None:
            try:
                job.on_success(remote_id)
            except Exception as e:
                logger.error(f"Post-upload step for chunk {job.part_number} failed: {e}")
                if job.on_failure is not None:
                    job.on_failure()
                return TransferResult(
                    part_number=job.part_number,
                    remote_id=remote_id,
                    bytes_transferred=len(data),
                    error=str(e) or type(e).__name__,
                )

        logger.debug(f"Uploaded chunk {job.part_number} to {job.account_id or 'account'} as {remote_id}")
        return TransferResult(part_number=job.part_number, remote_id=remote_id, bytes_transferred=len(data))

    @staticmethod
    def _download(job: DownloadJob, progress: ProgressAggregator) -> TransferResult:
        data = job.backend.download_chunk(job.remote_id, progress.callback_for(job.part_number))
        job.dest_path.write_bytes(data)
        progress.report(job.part_number, len(data))
        logger.debug(f"Downloaded chunk {job.part_number} ({len(data)} bytes) to {job.dest_path}")
        return TransferResult(part_number=job.part_number, remote_id=job.remote_id, bytes_transferred=len(data))

    @staticmethod
    def _delete(job: DeleteJob) -> TransferResult:
        job.backend.delete_chunk(job.remote_id)
        logger.debug(f"Deleted chunk {job.part_number} ({job.remote_id})")
        return TransferResult(part_number=job.part_number, remote_id=job.remote_id)
