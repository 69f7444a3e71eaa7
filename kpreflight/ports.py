"""
Capability interfaces for the external collaborators of the pipeline.

The pipeline's decision logic only talks to these protocols; git, make and the
symbol-diff tool are plugged in from git_backend, build and oracle.
"""

from pathlib import Path
from typing import List, Optional, Protocol, Tuple


class VcsService(Protocol):
    """The kernel working tree."""

    def is_repository(self) -> bool: ...

    def count_commits(self) -> int: ...

    def is_clean(self) -> bool: ...

    def head(self) -> str: ...

    def materialize_patches(self, count: int, dest_dir: Path) -> List[Path]: ...

    def reset_back(self, count: int) -> bool: ...

    def set_identity(self, name: str, email: str) -> None: ...

    def apply_patch(self, patch_file: Path) -> bool: ...

    def recent_commit_messages(self, count: int) -> List[Tuple[str, str]]: ...


class MirrorService(Protocol):
    """Read-only canonical upstream history."""

    def resolve_short_id(self, short_id: str) -> Optional[str]: ...

    def describe_contains(self, commit: str) -> Optional[str]: ...

    def describe_tags(self, commit: str) -> Optional[str]: ...

    def commit_message(self, commit: str) -> Optional[str]: ...


class BuildService(Protocol):
    """Kernel build steps. Jobs count is passed through to make."""

    def build_modules(self, log_name: str) -> Tuple[bool, Optional[Path]]: ...

    def baseline_build(self) -> Tuple[bool, Optional[Path]]: ...

    def final_build(self) -> None: ...


class SymbolDiffOracle(Protocol):
    """Compares two module interface manifests."""

    def available(self) -> bool: ...

    def compare(self, baseline: Path, current: Path) -> str: ...
