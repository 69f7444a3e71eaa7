"""
Pipeline orchestration for one preflight run.

Snapshot -> Materialize -> Backup+Replace -> ResetTree -> AnnotateAll ->
ApplyLoop -> FinalBuild -> Report. All steps run in order on the one kernel
tree; nothing runs concurrently.
"""

import shutil
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import List, Optional

from kpreflight.abi_gate import AbiGate, Baseline
from kpreflight.build import KernelBuilder
from kpreflight.classifier import PatchClassifier
from kpreflight.common import backup_file, logger
from kpreflight.config import PreflightConfig
from kpreflight.errors import (
    AnnotationIOError,
    DirtyTreeError,
    FinalBuildError,
    InsufficientHistoryError,
    NoPatchesError,
    NotARepositoryError,
    PatchApplyError,
    PreflightError,
)
from kpreflight.git_backend import KernelTree, UpstreamMirror
from kpreflight.models import Classification, PatchFile, RunReport, RunResult, RunStatus
from kpreflight.oracle import select_oracle
from kpreflight.ports import BuildService, VcsService
from kpreflight.provenance import ProvenanceResolver
from kpreflight.report import RunReporter
from kpreflight.rewriter import HeaderMetadata, HeaderRewriter


class Stage(str, Enum):
    """Pipeline stages in execution order."""
    PRECHECK = "precheck"
    SNAPSHOT = "snapshot"
    MATERIALIZE = "materialize"
    BACKUP_REPLACE = "backup-replace"
    RESET_TREE = "reset-tree"
    ANNOTATE = "annotate"
    APPLY = "apply"
    FINAL_BUILD = "final-build"
    REPORT = "report"


class Sequencer:
    """Drives a patch series through annotation, application and KABI checks."""

    def __init__(
        self,
        config: PreflightConfig,
        tree: VcsService,
        resolver: ProvenanceResolver,
        classifier: PatchClassifier,
        rewriter: HeaderRewriter,
        gate: AbiGate,
        build: BuildService,
        reporter: RunReporter,
    ):
        self.config = config
        self.tree = tree
        self.resolver = resolver
        self.classifier = classifier
        self.rewriter = rewriter
        self.gate = gate
        self.build = build
        self.reporter = reporter
        self.stage = Stage.PRECHECK
        self.report = RunReport(tree=str(config.linux_src_path))

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        logger.debug(f"Stage: {stage.value}")

    def _record(self, result: RunResult) -> None:
        self.report.results.append(result)

    def check_preconditions(self) -> None:
        """Fail before any mutation if the tree cannot take the series."""
        self._enter(Stage.PRECHECK)
        count = self.config.num_patches
        if not self.tree.is_repository():
            raise NotARepositoryError(
                f"Linux source path is not a git repo: {self.config.linux_src_path}"
            )
        total = self.tree.count_commits()
        if count <= 0 or total < count:
            raise InsufficientHistoryError(
                f"Repo has insufficient commits ({total}) for NUM_PATCHES={count}"
            )
        if not self.tree.is_clean():
            raise DirtyTreeError(
                "Linux source tree is not clean. Commit or stash changes before running."
            )

    def snapshot(self) -> str:
        """Save the current HEAD for manual recovery."""
        self._enter(Stage.SNAPSHOT)
        head = self.tree.head()
        self.config.head_id_file.write_text(f"{head}\n")
        self.report.saved_head = head
        logger.info(f"Saved HEAD commit: {head}")
        return head

    def materialize(self, dest_dir: Path) -> List[Path]:
        """Generate the last N commits as patch files into dest_dir."""
        self._enter(Stage.MATERIALIZE)
        count = self.config.num_patches
        logger.info(f"Generating {count} patches...")
        files = self.tree.materialize_patches(count, dest_dir)
        if len(files) < count:
            raise NoPatchesError(f"Expected {count} patches, got {len(files)}")
        return files

    def backup_and_replace(self, new_files: List[Path]) -> List[Path]:
        """Back up any existing patch set and move the new one in place."""
        self._enter(Stage.BACKUP_REPLACE)
        patches_dir = self.config.patches_dir
        stamp = f".bak-{int(time.time())}"
        for existing in sorted(patches_dir.glob("*.patch")):
            backup_file(existing, self.config.backup_dir, stamp)
            existing.unlink()
        moved = []
        for src in new_files:
            dest = patches_dir / src.name
            shutil.move(str(src), dest)
            moved.append(dest)
        return sorted(moved)

    def reset_tree(self) -> None:
        """Rewind the tree by N commits so the series can be re-applied."""
        self._enter(Stage.RESET_TREE)
        if not self.tree.reset_back(self.config.num_patches):
            logger.warning("Could not reset the tree, continuing with its current state")

    def annotate_all(self) -> List[PatchFile]:
        """Classify and rewrite every patch in the patches directory."""
        self._enter(Stage.ANNOTATE)
        logger.info("Modifying patches with metadata and Signed-off-by tags...")
        paths = sorted(self.config.patches_dir.glob("*.patch"))
        if not paths:
            raise NoPatchesError(f"No patches found in {self.config.patches_dir}")

        patches = []
        for path in paths:
            try:
                backup_file(path, self.config.backup_dir)
                patch = PatchFile.load(path)
                patch.classification = self.classifier.classify(patch)
                if patch.classification == Classification.MAINLINE_DERIVED:
                    patch.provenance = self.resolver.provenance_for(patch, mutate=True)
                patch.text = self.rewriter.annotate(
                    patch.text, patch.classification, patch.provenance
                )
                patch.save()
            except OSError as e:
                raise AnnotationIOError(f"Failed to rewrite {path.name}: {e}")

            origin = (
                f"{patch.provenance.commit[:12]} ({patch.provenance.tag})"
                if patch.provenance else "-"
            )
            logger.info(f"  {path.name}: {patch.classification.value} {origin}")
            patches.append(patch)
        return patches

    def apply_all(self, patches: List[PatchFile]) -> None:
        """Apply patches in order, checking KABI after each one."""
        self._enter(Stage.APPLY)
        self.tree.set_identity(self.config.signer_name, self.config.signer_email)
        logger.info(f"Total patches to process: {len(patches)}")
        logger.info(f"Build threads: {self.config.build_threads}")

        if self.config.baseline_build:
            self.gate.establish_baseline()
        elif not self.gate.enabled:
            logger.warning("No baseline Module.symvers, KABI checks will be skipped")
        self.report.kabi_enabled = self.gate.enabled

        total = len(patches)
        for idx, patch in enumerate(patches):
            logger.info(f"[{idx + 1}/{total}] Processing: {patch.name}")
            if not self.tree.apply_patch(patch.path):
                logger.error("  Applying   : FAIL")
                self._record(RunResult(
                    patch=patch.name,
                    applied=False,
                    classification=patch.classification,
                    detail="git am failed",
                ))
                for rest in patches[idx + 1:]:
                    self._record(RunResult(
                        patch=rest.name,
                        applied=False,
                        classification=rest.classification,
                        detail="not attempted",
                    ))
                raise PatchApplyError(patch.name)
            logger.info("  Applying   : PASS")

            following = patches[idx + 1].classification if idx + 1 < total else None
            verdict, detail = self.gate.check(patch.name, patch.classification, following)
            logger.info(f"  KABI Check : {verdict.value}{f' ({detail})' if detail else ''}")
            self._record(RunResult(
                patch=patch.name,
                applied=True,
                abi_verdict=verdict,
                classification=patch.classification,
                detail=detail,
            ))

    def final_build(self) -> None:
        self._enter(Stage.FINAL_BUILD)
        logger.info("All patches applied. Starting final build...")
        try:
            self.build.final_build()
        except FinalBuildError:
            self.report.final_build_ok = False
            raise
        self.report.final_build_ok = True

    def run(self) -> RunReport:
        """
        Execute the whole pipeline.

        Fatal errors stop the pipeline; the report still lists every patch
        seen so far and carries the error's status and exit code.
        """
        try:
            self.config.ensure_dirs()
            self.check_preconditions()
            self.snapshot()
            staging = Path(tempfile.mkdtemp(prefix="formatpatches.", dir=self.config.work_dir))
            try:
                new_files = self.materialize(staging)
                self.backup_and_replace(new_files)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
            self.reset_tree()
            patches = self.annotate_all()
            self.apply_all(patches)
            self.final_build()
        except PreflightError as e:
            logger.error(f"{self.stage.value}: {e}")
            self.report.error = str(e)
            self.report.status = e.status
            self.report.exit_code = e.exit_code
        except Exception as e:
            # git, file system or tool failure outside the known error paths
            logger.exception(f"{self.stage.value}: unexpected error: {e}")
            self.report.error = f"{self.stage.value}: {e}"
            self.report.status = RunStatus.INTERNAL_ERROR
            self.report.exit_code = RunStatus.INTERNAL_ERROR.exit_code

        self._enter(Stage.REPORT)
        self.report.kabi_failed = self.gate.kabi_failed
        return self.reporter.finalize(self.report)


def create_sequencer(config: PreflightConfig, reporter: Optional[RunReporter] = None) -> Sequencer:
    """Wire a Sequencer to git, make and the configured KABI oracle."""
    tree_path = config.linux_src_path
    resolver = ProvenanceResolver(UpstreamMirror(config.upstream_repo))
    builder = KernelBuilder(
        tree_path,
        config.profile.defconfig,
        config.build_threads,
        config.logs_dir,
    )
    gate = AbiGate(
        builder,
        select_oracle(config.kabi_oracle, tree_path),
        Baseline(config.baseline_manifest),
        config.logs_dir / "kabi_check.log",
    )
    return Sequencer(
        config=config,
        tree=KernelTree(tree_path),
        resolver=resolver,
        classifier=PatchClassifier(resolver),
        rewriter=HeaderRewriter(HeaderMetadata.from_config(config)),
        gate=gate,
        build=builder,
        reporter=reporter or RunReporter(config.logs_dir / "preflight_report.log"),
    )
