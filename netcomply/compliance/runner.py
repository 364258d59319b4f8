"""Concurrent compliance runs.

Evaluates every applicable (rule, device) pair of a set of policies on a
bounded worker pool. Each evaluation is isolated: failures and timeouts
become ERROR results and never abort the run. A run can be cancelled;
evaluations not yet started are dropped, in-flight ones finish or time out.

A timed-out evaluation cannot be interrupted and keeps its worker thread
until it returns. Once every worker is held that way, the evaluations still
queued are reported as ERROR so the run returns instead of waiting.
"""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..common.config import RunnerConfig
from ..common.logger import get_logger
from .context import EvaluationContext
from .device import DeviceView
from .exemptions import utcnow
from .policy import Policy
from .result import CheckResult, ResultOption
from .rule import Rule

logger = get_logger("runner")


@dataclass
class ComplianceRun:
    """Report of a compliance run."""

    results: List[CheckResult] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    # Timed-out evaluations still holding a worker when the run returned
    abandoned: int = 0

    def summary(self) -> Dict[str, int]:
        """Count results per outcome."""
        counts = {option.value: 0 for option in ResultOption}
        for result in self.results:
            counts[result.result.value] += 1
        return counts

    def non_conforming(self) -> List[CheckResult]:
        """Results that must be reported (non-conforming or in error)."""
        return [r for r in self.results if r.is_failure]

    def for_device(self, device_id: int) -> List[CheckResult]:
        return [r for r in self.results if r.device_id == device_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cancelled": self.cancelled,
            "abandoned": self.abandoned,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class _Progress:
    """Start times of the evaluations of one run, and those given up on."""

    started: Dict[int, float] = field(default_factory=dict)
    skipped: Set[int] = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock)


class ComplianceRunner:
    """Runs rule evaluations concurrently with per-evaluation timeouts."""

    def __init__(
        self,
        max_workers: int = 4,
        evaluation_timeout: float = 60.0,
        poll_interval: float = 0.05,
    ):
        """
        Initialize the runner.

        Args:
            max_workers: Size of the evaluation worker pool
            evaluation_timeout: Seconds one (rule, device) evaluation may take
            poll_interval: Seconds between timeout and cancellation checks
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.evaluation_timeout = evaluation_timeout
        self.poll_interval = min(poll_interval, evaluation_timeout)
        self._cancel_event = threading.Event()

    @classmethod
    def from_config(cls, config: RunnerConfig) -> "ComplianceRunner":
        return cls(max_workers=config.max_workers, evaluation_timeout=config.evaluation_timeout)

    def cancel(self) -> None:
        """Stop scheduling evaluations for the run in progress, or the next one."""
        logger.info("Compliance run cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(
        self,
        policies: Iterable[Policy],
        devices: Iterable[DeviceView],
        context: Optional[EvaluationContext] = None,
    ) -> ComplianceRun:
        """Evaluate all policies against all devices in scope.

        Results are ordered by device, then policy, then rule, whatever the
        completion order. Evaluations that never ran (cancelled run) are
        absent from the report.
        """
        context = context or EvaluationContext()
        jobs = self._plan(list(policies), list(devices))
        report = ComplianceRun(started_at=utcnow())
        logger.info(f"Starting compliance run: {len(jobs)} evaluation(s)")

        try:
            results, report.abandoned = self._execute(jobs, context)
            report.cancelled = self._cancel_event.is_set()
        finally:
            self._cancel_event.clear()

        report.results = [r for r in results if r is not None]
        report.finished_at = utcnow()
        logger.info(
            f"Compliance run {'cancelled' if report.cancelled else 'finished'}: "
            f"{len(report.results)}/{len(jobs)} evaluation(s), "
            f"{len(report.non_conforming())} non-conforming or in error"
        )
        if report.abandoned:
            logger.warning(f"{report.abandoned} timed-out evaluation(s) still running")
        return report

    def run_policy(
        self,
        policy: Policy,
        device: DeviceView,
        context: Optional[EvaluationContext] = None,
    ) -> ComplianceRun:
        """Evaluate one policy against one device."""
        return self.run([policy], [device], context)

    def _plan(
        self, policies: Sequence[Policy], devices: Sequence[DeviceView]
    ) -> List[Tuple[DeviceView, Rule]]:
        jobs = []
        for device in devices:
            seen: Set[Rule] = set()
            for policy in policies:
                if not policy.applies_to(device):
                    continue
                for rule in policy.rules:
                    if rule in seen:
                        continue
                    seen.add(rule)
                    jobs.append((device, rule))
        return jobs

    def _evaluate(
        self,
        index: int,
        device: DeviceView,
        rule: Rule,
        context: EvaluationContext,
        progress: _Progress,
    ) -> Optional[CheckResult]:
        with progress.lock:
            if self._cancel_event.is_set() or index in progress.skipped:
                return None
            progress.started[index] = time.monotonic()
        return rule.check(device, context)

    def _execute(
        self, jobs: List[Tuple[DeviceView, Rule]], context: EvaluationContext
    ) -> Tuple[List[Optional[CheckResult]], int]:
        results: List[Optional[CheckResult]] = [None] * len(jobs)
        progress = _Progress()
        stuck: Set[Future] = set()
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="compliance"
        )
        try:
            futures: Dict[Future, int] = {
                executor.submit(self._evaluate, index, device, rule, context, progress): index
                for index, (device, rule) in enumerate(jobs)
            }
            pending = set(futures)
            cancel_handled = False

            while pending:
                if self._cancel_event.is_set() and not cancel_handled:
                    for future in pending:
                        future.cancel()
                    cancel_handled = True

                done, pending = wait(
                    pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED
                )
                for future in done:
                    if future.cancelled():
                        continue
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        device, rule = jobs[index]
                        logger.exception(f"Evaluation of rule '{rule.name}' on {device.name} crashed")
                        results[index] = self._error(device, rule, f"Evaluation error: {e}")

                now = time.monotonic()
                for future in list(pending):
                    index = futures[future]
                    start = progress.started.get(index)
                    if start is None or now - start <= self.evaluation_timeout:
                        continue
                    pending.discard(future)
                    stuck.add(future)
                    device, rule = jobs[index]
                    message = f"Evaluation timed out after {self.evaluation_timeout:g}s"
                    logger.error(f"Rule '{rule.name}' on device {device.name}: {message}")
                    context.error(f"Rule '{rule.name}' on device {device.name}: {message}")
                    results[index] = self._error(device, rule, message)

                stuck = {future for future in stuck if not future.done()}
                if pending and len(stuck) >= self.max_workers:
                    for future in list(pending):
                        index = futures[future]
                        with progress.lock:
                            if index in progress.started:
                                continue
                            progress.skipped.add(index)
                        future.cancel()
                        pending.discard(future)
                        device, rule = jobs[index]
                        message = (
                            f"No worker available: {len(stuck)} timed-out evaluation(s) "
                            f"still running"
                        )
                        logger.error(f"Rule '{rule.name}' on device {device.name}: {message}")
                        context.error(f"Rule '{rule.name}' on device {device.name}: {message}")
                        results[index] = self._error(device, rule, message)
        finally:
            # Timed-out evaluations keep their worker until they return
            executor.shutdown(wait=False, cancel_futures=True)

        return results, sum(1 for future in stuck if not future.done())

    @staticmethod
    def _error(device: DeviceView, rule: Rule, comment: str) -> CheckResult:
        return CheckResult(
            rule_id=rule.id,
            rule_name=rule.name,
            device_id=device.id,
            device_name=device.name,
            result=ResultOption.ERROR,
            comment=comment,
        )
