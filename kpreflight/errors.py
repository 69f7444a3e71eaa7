"""
Exception hierarchy for the kernel preflight pipeline.

Every fatal condition maps to a run status and a distinct process exit code.
Recoverable conditions are never raised out of their component.
"""

from kpreflight.models import RunStatus


class PreflightError(Exception):
    """Base class for fatal pipeline errors."""
    exit_code = 1
    status = RunStatus.PRECONDITION_ERROR


class ConfigError(PreflightError):
    """Required configuration is missing or invalid."""
    exit_code = 2


class NotARepositoryError(PreflightError):
    """Kernel source path is not a git repository."""
    exit_code = 10


class InsufficientHistoryError(PreflightError):
    """Repository has fewer commits than the requested patch count."""
    exit_code = 11


class DirtyTreeError(PreflightError):
    """Kernel tree has uncommitted changes."""
    exit_code = 12


class NoPatchesError(PreflightError):
    """No patch files were materialized."""
    exit_code = 13


class AnnotationIOError(PreflightError):
    """A patch file could not be read or rewritten."""
    exit_code = 14


class PatchApplyError(PreflightError):
    """A patch failed to apply to the kernel tree."""
    exit_code = 20
    status = RunStatus.APPLY_ERROR

    def __init__(self, patch_name: str, message: str = ""):
        self.patch_name = patch_name
        super().__init__(message or f"git am failed for {patch_name}")


class FinalBuildError(PreflightError):
    """The full kernel build after applying the series failed."""
    exit_code = 21
    status = RunStatus.BUILD_ERROR

    def __init__(self, step: str, log_file=None):
        self.step = step
        self.log_file = log_file
        super().__init__(f"{step} failed (see {log_file})")
