"""
GitPython implementations of the kernel tree and upstream mirror services.
"""

from pathlib import Path
from typing import List, Optional, Tuple

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from kpreflight.common import logger


UPSTREAM_URL = "https://github.com/torvalds/linux.git"


class KernelTree:
    """The kernel source tree the series is applied to."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            self._repo = Repo(self.path)
        return self._repo

    def is_repository(self) -> bool:
        try:
            self.repo.git.rev_parse("--git-dir")
            return True
        except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError):
            return False

    def count_commits(self) -> int:
        try:
            return int(self.repo.git.rev_list("--count", "HEAD"))
        except (GitCommandError, ValueError):
            return 0

    def is_clean(self) -> bool:
        return not self.repo.is_dirty(untracked_files=True)

    def head(self) -> str:
        return self.repo.head.commit.hexsha

    def materialize_patches(self, count: int, dest_dir: Path) -> List[Path]:
        """Write the topmost count commits as numbered patch files."""
        dest_dir.mkdir(parents=True, exist_ok=True)
        self.repo.git.format_patch(f"-{count}", "HEAD", "-o", str(dest_dir))
        return sorted(dest_dir.glob("*.patch"))

    def reset_back(self, count: int) -> bool:
        try:
            self.repo.git.reset("--hard", f"HEAD~{count}")
        except GitCommandError as e:
            logger.warning(f"git reset --hard HEAD~{count} failed: {e.stderr.strip() if e.stderr else e}")
            return False
        commit = self.repo.head.commit
        logger.info(f"HEAD is now at {commit.hexsha[:12]} {commit.summary}")
        return True

    def set_identity(self, name: str, email: str) -> None:
        with self.repo.config_writer() as writer:
            writer.set_value("user", "name", name)
            writer.set_value("user", "email", email)

    def apply_patch(self, patch_file: Path) -> bool:
        try:
            self.repo.git.am("--3way", str(patch_file))
            return True
        except GitCommandError as e:
            logger.debug(f"git am failed for {patch_file.name}: {e.stderr}")
            try:
                self.repo.git.am("--abort")
            except GitCommandError:
                logger.debug("git am --abort had nothing to abort")
            return False

    def recent_commit_messages(self, count: int) -> List[Tuple[str, str]]:
        """(sha, message) of the last count non-merge commits, newest first."""
        return [
            (commit.hexsha, commit.message)
            for commit in self.repo.iter_commits("HEAD", max_count=count, no_merges=True)
        ]


class UpstreamMirror:
    """Bare clone of the canonical upstream history."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._repo: Optional[Repo] = None

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            self._repo = Repo(self.path)
        return self._repo

    def resolve_short_id(self, short_id: str) -> Optional[str]:
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"{short_id}^{{commit}}").strip() or None
        except GitCommandError:
            return None

    def describe_contains(self, commit: str) -> Optional[str]:
        try:
            return self.repo.git.describe("--contains", commit).strip() or None
        except GitCommandError:
            return None

    def describe_tags(self, commit: str) -> Optional[str]:
        try:
            return self.repo.git.describe("--tags", commit).strip() or None
        except GitCommandError:
            return None

    def commit_message(self, commit: str) -> Optional[str]:
        try:
            return self.repo.git.log("-1", "--format=%B", commit)
        except GitCommandError:
            return None

    @classmethod
    def clone_or_update(cls, path: Path, url: str = UPSTREAM_URL) -> "UpstreamMirror":
        """Clone the upstream repository as a bare mirror, or fetch its tags."""
        path = Path(path)
        if path.exists():
            logger.info(f"Updating upstream mirror {path}")
            Repo(path).git.fetch("--all", "--tags")
        else:
            logger.info(f"Cloning {url} into {path} (bare)")
            Repo.clone_from(url, path, bare=True)
        return cls(path)
