"""Tests for sequencer module."""

import pytest
from git.exc import GitCommandError

from kpreflight.abi_gate import AbiGate, Baseline
from kpreflight.classifier import PatchClassifier
from kpreflight.models import AbiVerdict, Classification, RunStatus
from kpreflight.provenance import ProvenanceResolver
from kpreflight.report import RunReporter
from kpreflight.rewriter import HeaderMetadata, HeaderRewriter
from kpreflight.sequencer import Sequencer

from conftest import (
    FIX_PATCH,
    FULL_ID,
    MAINLINE_PATCH,
    PLAIN_PATCH,
    FakeBuild,
    FakeOracle,
    FakeTree,
)


SERIES = [
    ("0001-mm-fix-page-refcount-leak.patch", MAINLINE_PATCH),
    ("0002-kabi-fix-struct-page-layout.patch", FIX_PATCH),
    ("0003-docs-fix-typo.patch", PLAIN_PATCH),
]


@pytest.fixture
def tree():
    return FakeTree(SERIES)


@pytest.fixture
def build(tmp_path):
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    return FakeBuild(build_dir, manifests=[f"0x{i} sym_a vmlinux EXPORT_SYMBOL\n" for i in (2, 3, 4)])


def make_sequencer(config, tree, mirror, build, oracle):
    resolver = ProvenanceResolver(mirror)
    gate = AbiGate(
        build,
        oracle,
        Baseline(config.baseline_manifest),
        config.logs_dir / "kabi_check.log",
    )
    return Sequencer(
        config=config,
        tree=tree,
        resolver=resolver,
        classifier=PatchClassifier(resolver),
        rewriter=HeaderRewriter(HeaderMetadata.from_config(config)),
        gate=gate,
        build=build,
        reporter=RunReporter(config.logs_dir / "preflight_report.log"),
    )


class TestPreconditions:
    """Tests for checks run before any mutation."""

    def test_not_a_repository(self, config, tree, mirror, build):
        """Test non-repository aborts with exit code 10."""
        tree.repository = False
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 10
        assert report.status == RunStatus.PRECONDITION_ERROR
        assert report.results == []
        assert not config.head_id_file.exists()

    def test_insufficient_history(self, config, tree, mirror, build):
        """Test too few commits aborts with exit code 11."""
        config.num_patches = 5
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 11
        assert tree.reset_count is None

    def test_dirty_tree(self, config, tree, mirror, build):
        """Test uncommitted changes abort with exit code 12."""
        tree.clean = False
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 12
        assert tree.reset_count is None
        assert tree.applied == []

    def test_no_patches(self, config, mirror, build):
        """Test materializing fewer patches than requested exits 13."""
        tree = FakeTree(SERIES)
        tree.materialize_patches = lambda count, dest_dir: []
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 13
        assert tree.reset_count is None


class TestRun:
    """Tests for complete pipeline runs."""

    def test_all_pass(self, config, tree, mirror, build):
        """Test clean run applies every patch and exits 0."""
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.status == RunStatus.ALL_PASS
        assert report.exit_code == 0
        assert tree.applied == [name for name, _ in SERIES]
        assert [r.abi_verdict for r in report.results] == [AbiVerdict.PASS] * 3
        assert report.final_build_ok is True
        assert build.final_built
        assert report.kabi_enabled

    def test_setup_steps(self, config, tree, mirror, build):
        """Test snapshot, reset and identity are done."""
        make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert config.head_id_file.read_text() == "f" * 40 + "\n"
        assert tree.reset_count == 3
        assert tree.identity == ("Test Signer", "signer@example.com")
        assert not list(config.work_dir.glob("formatpatches.*"))

    def test_patches_annotated(self, config, tree, mirror, build):
        """Test patch files are rewritten and backed up."""
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        mainline = (config.patches_dir / SERIES[0][0]).read_text()
        assert "mainline inclusion" in mainline
        assert "from mainline-v6.2" in mainline
        assert f"commit {FULL_ID} upstream" in mainline
        assert config.signoff_line in mainline

        fix = (config.patches_dir / SERIES[1][0]).read_text()
        assert "virt inclusion" in fix
        assert (config.backup_dir / SERIES[0][0]).read_text() == MAINLINE_PATCH
        assert [r.classification for r in report.results] == [
            Classification.MAINLINE_DERIVED,
            Classification.INTERFACE_FIX,
            Classification.UNCLASSIFIED,
        ]

    def test_existing_patches_backed_up(self, config, tree, mirror, build):
        """Test a previous patch set is moved to the backup directory."""
        config.patches_dir.mkdir(parents=True)
        (config.patches_dir / "0001-old.patch").write_text("old\n")
        make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert not (config.patches_dir / "0001-old.patch").exists()
        backups = list(config.backup_dir.glob("0001-old.patch.bak-*"))
        assert len(backups) == 1
        assert backups[0].read_text() == "old\n"

    def test_lookahead(self, config, tree, mirror, build):
        """Test breakage fixed by the next patch is not a failure."""
        report = make_sequencer(config, tree, mirror, build, FakeOracle([True, True, False])).run()
        assert [r.abi_verdict for r in report.results] == [
            AbiVerdict.WARN_DEFERRED,
            AbiVerdict.FIX,
            AbiVerdict.PASS,
        ]
        assert report.status == RunStatus.ALL_PASS
        assert report.exit_code == 0

    def test_kabi_failure(self, config, tree, mirror, build):
        """Test unrepaired breakage completes the run with exit code 22."""
        report = make_sequencer(config, tree, mirror, build, FakeOracle([False, False, True])).run()
        assert report.results[2].abi_verdict == AbiVerdict.FAIL
        assert report.kabi_failed
        assert report.status == RunStatus.KABI_FAILURES
        assert report.exit_code == 22
        assert build.final_built

    def test_apply_failure(self, config, tree, mirror, build):
        """Test failed apply stops the loop and exits 20."""
        tree.fail_on = {SERIES[1][0]}
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 20
        assert report.status == RunStatus.APPLY_ERROR
        assert [r.applied for r in report.results] == [True, False, False]
        assert report.results[1].detail == "git am failed"
        assert report.results[2].detail == "not attempted"
        assert tree.applied == [SERIES[0][0]]
        assert not build.final_built

    def test_final_build_failure(self, config, tree, mirror, build):
        """Test failed final build exits 21."""
        build.final_ok = False
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 21
        assert report.status == RunStatus.BUILD_ERROR
        assert report.final_build_ok is False

    def test_no_baseline_build(self, config, tree, mirror, build):
        """Test KABI checks are skipped without a baseline."""
        config.baseline_build = False
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert not report.kabi_enabled
        assert all(r.abi_verdict == AbiVerdict.SKIPPED for r in report.results)
        assert build.module_builds == []
        assert report.exit_code == 0

    def test_report_written(self, config, tree, mirror, build):
        """Test the text report is persisted."""
        make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        text = (config.logs_dir / "preflight_report.log").read_text()
        assert "0001-mm-fix-page-refcount-leak.patch: apply=PASS kabi=PASS" in text
        assert "Status: all-pass (exit 0)" in text


class TestUnexpectedErrors:
    """Tests for failures outside the known error paths."""

    def test_git_failure_still_reported(self, config, tree, mirror, build):
        """Test a git error during patch generation ends in a saved report."""
        def broken_format_patch(count, dest_dir):
            raise GitCommandError(["git", "format-patch"], 128, b"fatal: bad revision")

        tree.materialize_patches = broken_format_patch
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.status == RunStatus.INTERNAL_ERROR
        assert report.exit_code == 1
        assert report.error.startswith("materialize:")
        text = (config.logs_dir / "preflight_report.log").read_text()
        assert "Status: fatal-internal-error (exit 1)" in text

    def test_partial_results_kept(self, config, tree, mirror, build):
        """Test patches processed before the failure stay in the report."""
        applied = []

        def apply_then_fail(patch_file):
            if applied:
                raise OSError("disk full")
            applied.append(patch_file.name)
            return True

        tree.apply_patch = apply_then_fail
        report = make_sequencer(config, tree, mirror, build, FakeOracle()).run()
        assert report.exit_code == 1
        assert [r.patch for r in report.results] == [SERIES[0][0]]
        assert "disk full" in report.error
        assert SERIES[0][0] in (config.logs_dir / "preflight_report.log").read_text()
