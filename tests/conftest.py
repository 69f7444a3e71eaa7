"""Shared fixtures and in-memory service fakes."""

import pytest
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from kpreflight.config import PreflightConfig
from kpreflight.oracle import BREAKAGE_MARKER


FULL_ID = "1a2b3c4d5e6f708192a3b4c5d6e7f8091a2b3c4d"

MAINLINE_PATCH = """From 0123456789abcdef0123456789abcdef01234567 Mon Sep 17 00:00:00 2001
From: Jane Developer <jane@example.com>
Date: Mon, 6 Mar 2023 10:00:00 +0800
Subject: [PATCH 1/3] mm: fix page refcount leak

commit 1a2b3c4 upstream

The refcount was not dropped on the error path.

Signed-off-by: Upstream Maintainer <maint@kernel.org>
---
 mm/page_alloc.c | 2 +-
 1 file changed, 1 insertion(+), 1 deletion(-)

diff --git a/mm/page_alloc.c b/mm/page_alloc.c
--- a/mm/page_alloc.c
+++ b/mm/page_alloc.c
@@ -1,1 +1,1 @@
-old
+new
--
2.39.0
"""

FIX_PATCH = """From 89abcdef0123456789abcdef0123456789abcdef Mon Sep 17 00:00:00 2001
From: Jane Developer <jane@example.com>
Date: Mon, 6 Mar 2023 10:05:00 +0800
Subject: [PATCH 2/3] kabi: fix struct page layout change

Restore the reserved field so the interface stays stable.
---
 include/linux/mm_types.h | 1 +
 1 file changed, 1 insertion(+)

diff --git a/include/linux/mm_types.h b/include/linux/mm_types.h
--
2.39.0
"""

PLAIN_PATCH = """From fedcba9876543210fedcba9876543210fedcba98 Mon Sep 17 00:00:00 2001
From: Jane Developer <jane@example.com>
Date: Mon, 6 Mar 2023 10:10:00 +0800
Subject: [PATCH 3/3] docs: fix typo

Trivial typo fix.
---
 Documentation/foo.rst | 2 +-

diff --git a/Documentation/foo.rst b/Documentation/foo.rst
--
2.39.0
"""


class FakeMirror:
    """Upstream mirror backed by dictionaries."""

    def __init__(
        self,
        commits: Optional[Dict[str, str]] = None,
        contains: Optional[Dict[str, str]] = None,
        tags: Optional[Dict[str, str]] = None,
        messages: Optional[Dict[str, str]] = None,
    ):
        self.commits = commits or {}
        self.contains = contains or {}
        self.tags = tags or {}
        self.messages = messages or {}
        self.lookups: List[str] = []

    def resolve_short_id(self, short_id: str) -> Optional[str]:
        self.lookups.append(short_id)
        matches = [c for c in self.commits if c.startswith(short_id)]
        return matches[0] if len(matches) == 1 else None

    def describe_contains(self, commit: str) -> Optional[str]:
        return self.contains.get(commit)

    def describe_tags(self, commit: str) -> Optional[str]:
        return self.tags.get(commit)

    def commit_message(self, commit: str) -> Optional[str]:
        return self.messages.get(commit)


class FakeTree:
    """Kernel tree whose commits are a list of (name, patch text)."""

    def __init__(self, commits: List[Tuple[str, str]], clean: bool = True, repository: bool = True):
        self.commits = list(commits)
        self.clean = clean
        self.repository = repository
        self.fail_on: set = set()
        self.applied: List[str] = []
        self.identity: Optional[Tuple[str, str]] = None
        self.reset_count: Optional[int] = None
        self.messages: List[Tuple[str, str]] = []

    def is_repository(self) -> bool:
        return self.repository

    def count_commits(self) -> int:
        return len(self.commits)

    def is_clean(self) -> bool:
        return self.clean

    def head(self) -> str:
        return "f" * 40

    def materialize_patches(self, count: int, dest_dir: Path) -> List[Path]:
        dest_dir.mkdir(parents=True, exist_ok=True)
        files = []
        for name, text in self.commits[-count:]:
            path = dest_dir / name
            path.write_text(text)
            files.append(path)
        return files

    def reset_back(self, count: int) -> bool:
        self.reset_count = count
        return True

    def set_identity(self, name: str, email: str) -> None:
        self.identity = (name, email)

    def apply_patch(self, patch_file: Path) -> bool:
        if patch_file.name in self.fail_on:
            return False
        self.applied.append(patch_file.name)
        return True

    def recent_commit_messages(self, count: int) -> List[Tuple[str, str]]:
        return self.messages[:count]


class FakeBuild:
    """Build service that writes manifests from a scripted sequence."""

    def __init__(self, work_dir: Path, manifests: Optional[List[str]] = None):
        self.work_dir = work_dir
        self.manifests = list(manifests or [])
        self.baseline_manifest = "0x1 sym_a vmlinux EXPORT_SYMBOL\n"
        self.baseline_ok = True
        self.modules_ok = True
        self.final_ok = True
        self.module_builds: List[str] = []
        self.final_built = False

    def _write(self, content: str) -> Path:
        path = self.work_dir / "Module.symvers"
        path.write_text(content)
        return path

    def baseline_build(self):
        if not self.baseline_ok:
            return False, None
        return True, self._write(self.baseline_manifest)

    def build_modules(self, log_name: str):
        self.module_builds.append(log_name)
        if not self.modules_ok:
            return False, None
        content = self.manifests.pop(0) if self.manifests else self.baseline_manifest
        return True, self._write(content)

    def final_build(self) -> None:
        from kpreflight.errors import FinalBuildError
        self.final_built = True
        if not self.final_ok:
            raise FinalBuildError("Kernel build", self.work_dir / "final_build.log")


class FakeOracle:
    """Oracle returning scripted breakage results in order."""

    def __init__(self, breakages: Optional[List[bool]] = None, available: bool = True):
        self.breakages = list(breakages or [])
        self.is_available = available
        self.compared: List[Tuple[str, str]] = []

    def available(self) -> bool:
        return self.is_available

    def compare(self, baseline: Path, current: Path) -> str:
        self.compared.append((baseline.read_text(), current.read_text()))
        broken = self.breakages.pop(0) if self.breakages else False
        return f"{BREAKAGE_MARKER}\n" if broken else "no changes\n"


@pytest.fixture
def mirror():
    """Mirror knowing FULL_ID, released in v6.2."""
    return FakeMirror(
        commits={FULL_ID: "mm: fix page refcount leak"},
        contains={FULL_ID: "v6.2~12^2~3"},
    )


@pytest.fixture
def config(tmp_path):
    """Valid configuration rooted in a temporary directory."""
    return PreflightConfig(
        linux_src_path=tmp_path / "linux",
        upstream_repo=tmp_path / "torvalds",
        signer_name="Test Signer",
        signer_email="signer@example.com",
        bugzilla_id="IB1234",
        patch_category="bugfix",
        num_patches=3,
        build_threads=4,
        work_dir=tmp_path / "work",
    )
