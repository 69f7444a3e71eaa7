"""
Data models for the kernel preflight pipeline using Pydantic for validation.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
import re

from pydantic import BaseModel, Field, field_validator

from kpreflight.matchers import extract_subject


FULL_SHA_LENGTH = 40

# Tag sentinel for commits not yet contained in any release
MAINLINE_TAG = "mainline"


class Classification(str, Enum):
    """How a patch relates to upstream."""
    MAINLINE_DERIVED = "mainline"
    INTERFACE_FIX = "kabi-fix"
    UNCLASSIFIED = "unclassified"


class AbiVerdict(str, Enum):
    """Interface impact of a single applied patch."""
    PASS = "PASS"
    FAIL = "FAIL"
    FIX = "KABI_FIX"
    WARN_DEFERRED = "WARN_HAS_FIX"
    SKIPPED = "SKIPPED"


class RunStatus(str, Enum):
    """Overall classification of a pipeline run."""
    ALL_PASS = "all-pass"
    KABI_FAILURES = "completed-with-kabi-failures"
    PRECONDITION_ERROR = "fatal-precondition-error"
    APPLY_ERROR = "fatal-apply-error"
    BUILD_ERROR = "fatal-build-error"
    INTERNAL_ERROR = "fatal-internal-error"

    @property
    def exit_code(self) -> int:
        """Default process exit code for this status."""
        return {
            RunStatus.ALL_PASS: 0,
            RunStatus.KABI_FAILURES: 22,
            RunStatus.PRECONDITION_ERROR: 11,
            RunStatus.APPLY_ERROR: 20,
            RunStatus.BUILD_ERROR: 21,
            RunStatus.INTERNAL_ERROR: 1,
        }[self]


class Provenance(BaseModel):
    """Resolved upstream identity of a patch."""
    commit: str
    tag: str = MAINLINE_TAG

    @field_validator("commit")
    @classmethod
    def validate_commit(cls, v: str) -> str:
        """Commit ids are lowercase hex, 7 to 40 characters."""
        if not re.fullmatch(r"[0-9a-f]{7,40}", v):
            raise ValueError(f"Invalid commit id: {v}")
        return v

    @property
    def is_full(self) -> bool:
        """True when the commit id is in canonical full-length form."""
        return len(self.commit) == FULL_SHA_LENGTH

    @property
    def is_released(self) -> bool:
        """True when the commit is contained in a release tag."""
        return self.tag != MAINLINE_TAG


class PatchFile(BaseModel):
    """A materialized patch file and its in-memory text."""
    path: Path
    text: str
    classification: Optional[Classification] = None
    provenance: Optional[Provenance] = None

    @classmethod
    def load(cls, path: Path) -> "PatchFile":
        """Read a patch file from disk."""
        path = Path(path)
        return cls(path=path, text=path.read_text(encoding="utf-8", errors="surrogateescape"))

    def save(self) -> None:
        """Write the current text back to the patch file."""
        self.path.write_text(self.text, encoding="utf-8", errors="surrogateescape")

    @property
    def name(self) -> str:
        """File name, which is also the ordering key of the series."""
        return self.path.name

    @property
    def subject(self) -> str:
        """Subject header of the patch, without the 'Subject: ' prefix."""
        return extract_subject(self.text)


class RunResult(BaseModel):
    """Fate of one patch within a run. Immutable once recorded."""
    model_config = {"frozen": True}

    patch: str
    applied: bool
    abi_verdict: AbiVerdict = AbiVerdict.SKIPPED
    classification: Optional[Classification] = None
    detail: str = ""


class RunReport(BaseModel):
    """Aggregate output of a pipeline run."""
    started: datetime = Field(default_factory=datetime.now)
    finished: Optional[datetime] = None
    tree: str = ""
    saved_head: Optional[str] = None
    results: List[RunResult] = Field(default_factory=list)
    final_build_ok: Optional[bool] = None
    kabi_failed: bool = False
    kabi_enabled: bool = False
    status: RunStatus = RunStatus.ALL_PASS
    error: Optional[str] = None
    exit_code: int = 0

    @property
    def applied_count(self) -> int:
        """Number of patches that applied."""
        return sum(1 for r in self.results if r.applied)

    def verdict_counts(self) -> Dict[str, int]:
        """Count results per ABI verdict."""
        counts = {v.value: 0 for v in AbiVerdict}
        for result in self.results:
            counts[result.abi_verdict.value] += 1
        return counts
