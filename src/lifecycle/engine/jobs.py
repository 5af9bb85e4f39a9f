"""Background job submission with handles the caller can poll or cancel."""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import TrainingCancelled
from ..models import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class Job:
    """Handle for one submitted training or validation job."""
    id: str
    kind: str  # train / validate
    model_id: int
    future: Future
    cancel_token: CancelToken = field(default_factory=CancelToken)
    run_id: Optional[int] = None

    def cancel(self):
        """Request cooperative cancellation; takes effect at the next iteration check."""
        self.cancel_token.cancel()
        logger.info(f"Cancellation requested for {self.kind} job {self.id} (model {self.model_id})")

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        """Block until finished; re-raises the job's error."""
        return self.future.result(timeout=timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self.future.exception(timeout=timeout)

    @property
    def status(self) -> str:
        if not self.future.done():
            return "running"
        error = self.future.exception()
        if error is None:
            return "completed"
        return "cancelled" if isinstance(error, TrainingCancelled) else "failed"


class JobRunner:
    """
    Thread pool for long-running jobs.

    Usage:
        runner = JobRunner(max_workers=2)
        job = runner.submit("train", model_id, lambda job: do_work(job))
        job.result()
    """

    def __init__(self, max_workers: int = 2, history: int = 256):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lifecycle-job")
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        # Finished handles kept for polling; running jobs are never dropped
        self.history = history

    @staticmethod
    def new_job_id(kind: str) -> str:
        return f"{kind}-{uuid.uuid4().hex[:12]}"

    def submit(self, kind: str, model_id: int, fn: Callable[[Job], Any],
               job_id: Optional[str] = None) -> Job:
        """Run `fn(job)` in the pool and return the handle immediately."""
        job_id = job_id or self.new_job_id(kind)
        future: Future = Future()
        job = Job(id=job_id, kind=kind, model_id=model_id, future=future)

        def _run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(job))
            except Exception as e:
                future.set_exception(e)

        with self._lock:
            self._executor.submit(_run)
            self._prune()
            self._jobs[job_id] = job
        logger.info(f"Submitted {kind} job {job_id} for model {model_id}")
        return job

    def _prune(self):
        finished = [job_id for job_id, job in self._jobs.items() if job.done()]
        for job_id in finished[:max(0, len(finished) - self.history)]:
            del self._jobs[job_id]

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def active_jobs(self) -> List[Job]:
        with self._lock:
            return [job for job in self._jobs.values() if not job.done()]

    def shutdown(self, wait: bool = True, cancel_running: bool = False):
        if cancel_running:
            for job in self.active_jobs():
                job.cancel()
        self._executor.shutdown(wait=wait)
