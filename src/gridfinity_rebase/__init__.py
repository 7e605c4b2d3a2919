"""Public API for detecting and swapping module bases."""

from gridfinity_rebase.contracts import NoBaseGeometryError, RebaseConfig, RebaseRunResult
from gridfinity_rebase.pipeline import detect_and_render, run_rebase_pipeline
from gridfinity_rebase.session import RebaseSession, RebaseStatus

__all__ = [
    "NoBaseGeometryError",
    "RebaseConfig",
    "RebaseRunResult",
    "RebaseSession",
    "RebaseStatus",
    "detect_and_render",
    "run_rebase_pipeline",
]
