# -*- coding: utf-8 -*-
import concurrent.futures
import logging
import os
import threading
from typing import Callable, Dict, List, Optional, Sequence

from tqdm import tqdm

from .codecs import CodecSelection
from .color import DEFAULT_ICC_WORKERS
from .errors import ConfigError
from .executor import execute_job
from .jobs import BatchReport, JobDescriptor, JobFailure, JobResult
from .paths import get_common_path, resolve_output_path
from .pipeline import PipelineSpec

logger = logging.getLogger(__name__)

MIN_THREADS = 1
MAX_THREADS = 16


def default_thread_count() -> int:
    return max(MIN_THREADS, min(MAX_THREADS, os.cpu_count() or 4))


class ProgressCounter:
    """Completed-job counter shared by all workers."""

    def __init__(self, total: int = 0):
        self.total = total
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class WorkerPool:
    """Fixed-size thread pool handed to the scheduler; one job runs to completion per worker."""

    def __init__(self, max_workers: Optional[int] = None):
        if max_workers is None:
            max_workers = default_thread_count()
        if not MIN_THREADS <= max_workers <= MAX_THREADS:
            raise ConfigError(f"--threads must be between {MIN_THREADS} and {MAX_THREADS} (inclusive), got {max_workers}")
        self.max_workers = max_workers
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def __enter__(self) -> "WorkerPool":
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="worker")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(cancel_pending=exc_type is not None)

    def submit(self, fn: Callable, *args, **kwargs) -> concurrent.futures.Future:
        if self._executor is None:
            raise RuntimeError("WorkerPool must be entered before submitting jobs")
        return self._executor.submit(fn, *args, **kwargs)

    def shutdown(self, cancel_pending: bool = False):
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=cancel_pending)
            self._executor = None


def build_jobs(
    files: Sequence[str],
    pipeline: PipelineSpec,
    codec: CodecSelection,
    output_dir: Optional[str] = None,
    suffix: Optional[str] = None,
    recursive: bool = False,
    backup: bool = False,
) -> List[JobDescriptor]:
    common_root = get_common_path(list(files)) if recursive and output_dir else None
    jobs = []
    for input_path in files:
        output_path = resolve_output_path(input_path, codec.extension, output_dir, suffix, recursive, common_root)
        jobs.append(JobDescriptor(os.path.abspath(input_path), output_path, backup, pipeline, codec))
    return jobs


def _run_job(job: JobDescriptor, counter: ProgressCounter, icc_workers: int) -> JobResult:
    try:
        return execute_job(job, icc_workers)
    finally:
        counter.increment()


def _collect(future: concurrent.futures.Future, job: JobDescriptor) -> JobResult:
    try:
        return future.result()
    except Exception as exc:
        return JobFailure(job.input_path, "InternalError", f"Task failed with an unexpected exception: {exc}")


def run_batch(
    jobs: Sequence[JobDescriptor],
    pool: WorkerPool,
    icc_workers: int = DEFAULT_ICC_WORKERS,
    show_progress: bool = True,
    counter: Optional[ProgressCounter] = None,
) -> BatchReport:
    """
    Submits one task per job and gathers every result, in completion order.

    A failing file is recorded and never stops the others. On KeyboardInterrupt
    pending jobs are cancelled, running ones finish, and the partial report is
    returned with `interrupted` set.
    """
    report = BatchReport()
    if not jobs:
        logger.warning("No image files found to process.")
        return report

    counter = counter or ProgressCounter(len(jobs))
    logger.info(f"Starting batch processing of {len(jobs)} images using up to {pool.max_workers} threads...")

    collected = set()
    with pool:
        futures_map: Dict[concurrent.futures.Future, JobDescriptor] = {
            pool.submit(_run_job, job, counter, icc_workers): job for job in jobs
        }
        try:
            with tqdm(total=len(jobs), desc="Processing images", unit="file", ncols=100,
                      leave=True, disable=not show_progress) as pbar:
                for future in concurrent.futures.as_completed(futures_map):
                    report.add(_collect(future, futures_map[future]))
                    collected.add(future)
                    pbar.update(1)
        except KeyboardInterrupt:
            logger.warning("Interrupted. Letting running jobs finish; no new files will be started.")
            report.interrupted = True
            pool.shutdown(cancel_pending=True)
            for future, job in futures_map.items():
                if future in collected:
                    continue
                if future.cancelled():
                    report.skipped.append(f"Skipped '{job.input_path}': not started before interrupt.")
                    continue
                report.add(_collect(future, job))

    if report.failures:
        logger.warning(f"Batch finished with {len(report.failures)} errors.")
    else:
        logger.info("Batch finished successfully.")
    return report
