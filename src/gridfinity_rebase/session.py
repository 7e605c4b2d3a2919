"""
Per-session request handling for interactive callers.

Detection and script generation run synchronously inside ``submit``; only
the OpenSCAD call is pushed to a background executor.  Every submission gets
a fresh request id and only the most recent request may publish its result.
A request superseded while still queued never starts OpenSCAD; one
superseded mid-evaluation is left to finish and its result is dropped.  The
temporary directory of every call is removed as soon as it returns.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from gridfinity_rebase.contracts import BaseAnnotation, EvaluatorResult, RebaseConfig
from gridfinity_rebase.evaluator import DEFAULT_ARGS, DEFAULT_COMMAND, run_openscad
from gridfinity_rebase.mesh_io import load_mesh_bytes, sha256_bytes
from gridfinity_rebase.pipeline import detect_and_render

logger = logging.getLogger(__name__)

Evaluate = Callable[..., EvaluatorResult]


class RebaseStatus(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    EVALUATING = "evaluating"  # long-running, not a fault
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class RebaseOutcome:
    """What a caller needs to present one finished request."""

    request_id: str
    rotation_type: str
    reference_rotation_type: str
    annotations: List[BaseAnnotation]
    openscad_code: str
    subject_sha256: str
    reference_sha256: str
    evaluation: Optional[EvaluatorResult] = None

    @property
    def base_count(self) -> int:
        return len(self.annotations)


class RebaseSession:
    """Holds the state of one interactive rebasing session."""

    def __init__(
        self,
        config: Optional[RebaseConfig] = None,
        executor: Optional[Executor] = None,
        evaluate: Evaluate = run_openscad,
    ):
        self.config = config
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="rebase-eval"
        )
        self._evaluate = evaluate
        self._lock = threading.Lock()

        self.reference_stl: Optional[bytes] = None
        self.latest_request_id: Optional[str] = None
        self.status = RebaseStatus.IDLE
        self.outcome: Optional[RebaseOutcome] = None
        self.error: Optional[str] = None

    def set_reference(self, reference_stl: bytes) -> None:
        """Remember the reference mesh for later submissions."""
        self.reference_stl = reference_stl

    def submit(
        self,
        subject_stl: bytes,
        reference_stl: Optional[bytes] = None,
        on_result: Optional[Callable[[RebaseOutcome], None]] = None,
    ) -> Future:
        """Detect bases, render the script and queue the evaluator call.

        Detection errors (e.g. ``NoBaseGeometryError``) are raised here,
        before anything is queued.  The returned future resolves to the
        outcome, or to ``None`` if a newer request superseded this one.
        """
        if reference_stl is not None:
            self.set_reference(reference_stl)
        if self.reference_stl is None:
            raise ValueError("No reference mesh set for this session")
        reference_stl = self.reference_stl

        request_id = uuid.uuid4().hex
        with self._lock:
            self.latest_request_id = request_id
            self.status = RebaseStatus.DETECTING
            self.outcome = None
            self.error = None

        try:
            subject, reference, _, scad_code, annotations = detect_and_render(
                load_mesh_bytes(subject_stl),
                load_mesh_bytes(reference_stl),
                self.config,
            )
        except Exception as exc:
            with self._lock:
                if self.latest_request_id == request_id:
                    self.status = RebaseStatus.FAILED
                    self.error = str(exc)
            raise

        outcome = RebaseOutcome(
            request_id=request_id,
            rotation_type=subject.rotation_type,
            reference_rotation_type=reference.rotation_type,
            annotations=annotations,
            openscad_code=scad_code,
            subject_sha256=sha256_bytes(subject_stl),
            reference_sha256=sha256_bytes(reference_stl),
        )
        with self._lock:
            if self.latest_request_id == request_id:
                self.status = RebaseStatus.EVALUATING

        command = self.config.openscad_command if self.config else DEFAULT_COMMAND
        extra_args = self.config.evaluator_args if self.config else DEFAULT_ARGS
        return self._executor.submit(
            self._evaluate_and_publish,
            outcome,
            subject_stl,
            reference_stl,
            tuple(command),
            tuple(extra_args),
            on_result,
        )

    def is_current(self, request_id: str) -> bool:
        with self._lock:
            return request_id == self.latest_request_id

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _evaluate_and_publish(
        self,
        outcome: RebaseOutcome,
        subject_stl: bytes,
        reference_stl: bytes,
        command,
        extra_args,
        on_result,
    ) -> Optional[RebaseOutcome]:
        with self._lock:
            if outcome.request_id != self.latest_request_id:
                logger.debug("Skipping superseded request %s", outcome.request_id)
                return None
        try:
            evaluation = self._evaluate(
                outcome.openscad_code,
                subject_stl,
                reference_stl,
                command=command,
                extra_args=extra_args,
            )
        except Exception as exc:
            logger.exception("Evaluation crashed for request %s", outcome.request_id)
            evaluation = EvaluatorResult(output=None, diagnostics=[f"ERROR: {exc}"])
        outcome.evaluation = evaluation

        with self._lock:
            if outcome.request_id != self.latest_request_id:
                logger.debug("Dropping superseded result %s", outcome.request_id)
                return None
            self.outcome = outcome
            if evaluation.failed:
                self.status = RebaseStatus.FAILED
                self.error = "\n".join(evaluation.diagnostics)
            else:
                self.status = RebaseStatus.FINISHED

        if on_result is not None:
            on_result(outcome)
        return outcome
