"""
Kernel build steps driven through make.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from kpreflight.common import logger, run_command
from kpreflight.errors import FinalBuildError


MANIFEST_NAME = "Module.symvers"


class KernelBuilder:
    """Build a kernel tree with a distribution defconfig."""

    def __init__(self, tree: Path, defconfig: str, jobs: int, logs_dir: Path):
        self.tree = Path(tree)
        self.defconfig = defconfig
        self.jobs = jobs
        self.logs_dir = Path(logs_dir)

    @property
    def manifest(self) -> Path:
        return self.tree / MANIFEST_NAME

    def verify_build_deps(self) -> Tuple[bool, List[str]]:
        """
        Verify build tools are available.

        Returns:
            Tuple of (all_present, missing_deps)
        """
        deps = {
            "make": "make package",
            "gcc": "gcc package",
            "git": "git package",
        }

        missing = []
        for cmd, package in deps.items():
            returncode, _, _ = run_command(["which", cmd])
            if returncode != 0:
                missing.append(f"{cmd} ({package})")

        if missing:
            logger.error(f"Missing build dependencies: {', '.join(missing)}")
            return False, missing

        logger.debug("Build dependencies verified")
        return True, []

    def _make(self, args: List[str], log_file: Path) -> bool:
        returncode, _, _ = run_command(["make", *args], cwd=self.tree, log_file=log_file)
        return returncode == 0

    def _collect_manifest(self, ok: bool) -> Tuple[bool, Optional[Path]]:
        if ok and self.manifest.exists():
            return True, self.manifest
        return ok, None

    def build_modules(self, log_name: str) -> Tuple[bool, Optional[Path]]:
        """Incremental module build; returns (success, manifest path)."""
        log_file = self.logs_dir / f"{log_name}.log"
        ok = self._make([f"-j{self.jobs}", "modules"], log_file)
        return self._collect_manifest(ok)

    def baseline_build(self) -> Tuple[bool, Optional[Path]]:
        """Clean defconfig module build of the tree before the series."""
        log_file = self.logs_dir / "baseline_build.log"
        ok = (
            self._make(["clean"], log_file)
            and self._make([self.defconfig], log_file)
            and self._make([f"-j{self.jobs}", "modules"], log_file)
        )
        return self._collect_manifest(ok)

    def final_build(self) -> None:
        """
        Full build of the patched tree.

        Raises:
            FinalBuildError: naming the step that failed
        """
        log_file = self.logs_dir / "final_build.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.write_text(f"Final Build Log\nBuild started at: {datetime.now()}\n\n")

        self._make(["clean"], log_file)
        steps = [
            ("Configuration", [self.defconfig]),
            ("Kernel build", [f"-j{self.jobs}"]),
            ("Module build", ["modules", f"-j{self.jobs}"]),
        ]
        for step, args in steps:
            logger.info(f"Running: make {' '.join(args)}")
            if not self._make(args, log_file):
                logger.error(f"{step} failed, refer to the log: {log_file}")
                raise FinalBuildError(step, log_file)
        logger.info("Final build completed successfully")
