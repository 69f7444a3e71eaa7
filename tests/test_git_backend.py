"""Tests for git_backend module using small real repositories."""

import pytest
from pathlib import Path

from git import Actor, Repo

from kpreflight.git_backend import KernelTree, UpstreamMirror


AUTHOR = Actor("Jane Developer", "jane@example.com")


def _commit(repo: Repo, name: str, content: str, message: str) -> str:
    path = Path(repo.working_tree_dir) / name
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR).hexsha


@pytest.fixture
def kernel_repo(tmp_path):
    """Repository with three commits."""
    repo = Repo.init(tmp_path / "linux")
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Jane Developer")
        writer.set_value("user", "email", "jane@example.com")
    _commit(repo, "README", "linux\n", "Initial commit")
    _commit(repo, "mm.c", "old\n", "mm: add file")
    _commit(repo, "mm.c", "new\n", "mm: fix page refcount leak\n\ncommit 1a2b3c4 upstream\n")
    return repo


@pytest.fixture
def tree(kernel_repo):
    return KernelTree(Path(kernel_repo.working_tree_dir))


class TestKernelTree:
    """Tests for the kernel tree backend."""

    def test_repository_checks(self, tree):
        """Test repository, history and cleanliness queries."""
        assert tree.is_repository()
        assert tree.count_commits() == 3
        assert tree.is_clean()

    def test_not_a_repository(self, tmp_path):
        """Test plain directory is not a repository."""
        (tmp_path / "plain").mkdir()
        assert not KernelTree(tmp_path / "plain").is_repository()

    def test_untracked_file_is_dirty(self, tree):
        """Test untracked files make the tree dirty."""
        (tree.path / "stray.o").write_text("x")
        assert not tree.is_clean()

    def test_materialize_reset_apply(self, tree, tmp_path):
        """Test patches can be regenerated, reset and re-applied."""
        head = tree.head()
        files = tree.materialize_patches(2, tmp_path / "out")
        assert [f.name[:4] for f in files] == ["0001", "0002"]
        assert tree.reset_back(2)
        assert tree.count_commits() == 1
        tree.set_identity("Test Signer", "signer@example.com")
        for patch_file in files:
            assert tree.apply_patch(patch_file)
        assert tree.count_commits() == 3
        assert tree.head() != head
        assert tree.repo.head.commit.committer.email == "signer@example.com"

    def test_apply_failure_aborts(self, tree, tmp_path):
        """Test failed apply leaves no am session behind."""
        bad = tmp_path / "bad.patch"
        bad.write_text("this is not a patch\n")
        assert not tree.apply_patch(bad)
        assert not (Path(tree.repo.git_dir) / "rebase-apply").exists()

    def test_recent_commit_messages(self, tree):
        """Test messages listed newest first."""
        messages = tree.recent_commit_messages(2)
        assert messages[0][1].startswith("mm: fix page refcount leak")
        assert messages[1][1].startswith("mm: add file")


class TestUpstreamMirror:
    """Tests for the upstream mirror backend."""

    @pytest.fixture
    def mirror(self, kernel_repo):
        kernel_repo.create_tag("v6.2", ref=kernel_repo.head.commit.parents[0])
        return UpstreamMirror(Path(kernel_repo.working_tree_dir))

    def test_resolve_short_id(self, mirror, kernel_repo):
        """Test abbreviated id expands to full length."""
        full = kernel_repo.head.commit.hexsha
        assert mirror.resolve_short_id(full[:10]) == full

    def test_resolve_unknown(self, mirror):
        """Test unknown id resolves to None."""
        assert mirror.resolve_short_id("0000000") is None

    def test_describe(self, mirror, kernel_repo):
        """Test tag lookups."""
        tagged = kernel_repo.head.commit.parents[0].hexsha
        assert mirror.describe_contains(tagged).startswith("v6.2")
        assert mirror.describe_contains(kernel_repo.head.commit.hexsha) is None
        assert mirror.describe_tags(kernel_repo.head.commit.hexsha).startswith("v6.2-1-g")

    def test_commit_message(self, mirror, kernel_repo):
        """Test full message lookup."""
        message = mirror.commit_message(kernel_repo.head.commit.hexsha)
        assert "commit 1a2b3c4 upstream" in message
