"""
Kernel preflight - pre-validation of a kernel patch series before submission.

This package provides tools for:
- Resolving upstream provenance (commit id, release tag) of each patch
- Classifying patches as mainline-derived or KABI fix patches
- Rewriting patch headers with distribution provenance metadata
- Applying the series patch by patch with an incremental KABI check
- Reporting per-patch results and an overall run classification
"""

__version__ = "1.0.0"
__author__ = "Kernel Preflight Team"

from kpreflight.config import PreflightConfig, DISTRO_PROFILES, SUPPORTED_DISTROS
from kpreflight.models import (
    AbiVerdict,
    Classification,
    PatchFile,
    Provenance,
    RunReport,
    RunResult,
    RunStatus,
)

__all__ = [
    "__version__",
    "PreflightConfig",
    "DISTRO_PROFILES",
    "SUPPORTED_DISTROS",
    "AbiVerdict",
    "Classification",
    "PatchFile",
    "Provenance",
    "RunReport",
    "RunResult",
    "RunStatus",
]
