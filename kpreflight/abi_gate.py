"""
Incremental KABI check run after each applied patch.

Each check builds the modules, compares the new Module.symvers against the
manifest of the previous step, and then makes the new manifest the baseline.
A breakage is only a failure when neither the patch itself nor the patch right
after it is a declared KABI fix.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from kpreflight.common import atomic_copy, logger
from kpreflight.models import AbiVerdict, Classification
from kpreflight.oracle import OracleError, has_breakage
from kpreflight.ports import BuildService, SymbolDiffOracle


class Baseline:
    """The single live module interface manifest."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def replace(self, manifest: Path) -> None:
        atomic_copy(manifest, self.path)

    def discard(self) -> None:
        if self.path.exists():
            self.path.unlink()


def refine_verdict(
    breakage: bool,
    current: Optional[Classification],
    following: Optional[Classification],
) -> AbiVerdict:
    """
    Verdict for a patch given the oracle result and the lookahead rule.

    Args:
        breakage: Oracle reported an ABI breakage
        current: Classification of the patch just applied
        following: Classification of the next patch, None for the last one
    """
    if not breakage:
        return AbiVerdict.PASS
    if current == Classification.INTERFACE_FIX:
        return AbiVerdict.FIX
    if following == Classification.INTERFACE_FIX:
        return AbiVerdict.WARN_DEFERRED
    return AbiVerdict.FAIL


class AbiGate:
    """Per-patch KABI regression check with a one-step baseline."""

    def __init__(
        self,
        build: BuildService,
        oracle: SymbolDiffOracle,
        baseline: Baseline,
        log_file: Path,
    ):
        self.build = build
        self.oracle = oracle
        self.baseline = baseline
        self.log_file = Path(log_file)
        self.kabi_failed = False

    @property
    def enabled(self) -> bool:
        return self.baseline.exists()

    def _log(self, text: str) -> None:
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a") as f:
            f.write(text)

    def establish_baseline(self) -> bool:
        """Build the unpatched tree and store its manifest as the baseline."""
        logger.info("Building baseline for KABI check...")
        ok, manifest = self.build.baseline_build()
        if not ok:
            logger.warning("Baseline build failed, KABI checks will be skipped")
            self.baseline.discard()
            return False
        if manifest is None:
            logger.warning("Module.symvers not created, KABI checks will be skipped")
            self.baseline.discard()
            return False
        self.baseline.replace(manifest)
        logger.info("Baseline Module.symvers created")
        return True

    def check(
        self,
        patch_name: str,
        current: Optional[Classification],
        following: Optional[Classification],
    ) -> Tuple[AbiVerdict, str]:
        """
        Check the interface impact of the patch just applied.

        Returns:
            Tuple of (verdict, detail)
        """
        if not self.enabled:
            self._log(f"  -> {patch_name}: no baseline Module.symvers, skipping KABI check\n")
            return AbiVerdict.SKIPPED, "no baseline"

        logger.info("  Building modules for KABI check...")
        ok, manifest = self.build.build_modules(f"modules_{Path(patch_name).stem}")
        if not ok or manifest is None:
            logger.warning(f"  KABI check skipped for {patch_name}: module build failed")
            self._log(f"  -> {patch_name}: module build failed, skipping KABI check\n")
            return AbiVerdict.SKIPPED, "module build failed"

        if not self.oracle.available():
            self._log(f"  -> {patch_name}: KABI oracle not available, skipping KABI check\n")
            self.baseline.replace(manifest)
            return AbiVerdict.SKIPPED, "oracle unavailable"

        try:
            report = self.oracle.compare(self.baseline.path, manifest)
        except (OracleError, OSError) as e:
            logger.warning(f"  KABI check skipped for {patch_name}: {e}")
            self._log(f"  -> {patch_name}: KABI oracle error, skipping KABI check ({e})\n")
            self.baseline.replace(manifest)
            return AbiVerdict.SKIPPED, "oracle error"

        breakage = has_breakage(report)
        self._log(
            f"\nKABI Check for: {patch_name} ({datetime.now().isoformat(timespec='seconds')})\n"
            f"----------------------------------------\n"
            f"{report}"
            f"  -> {'KABI breakage detected!' if breakage else 'No KABI breakage'}\n"
        )

        verdict = refine_verdict(breakage, current, following)
        self.baseline.replace(manifest)

        if verdict == AbiVerdict.FAIL:
            self.kabi_failed = True
        detail = {
            AbiVerdict.PASS: "",
            AbiVerdict.FIX: "KABI fix patch",
            AbiVerdict.WARN_DEFERRED: "next patch is KABI fix",
            AbiVerdict.FAIL: "KABI breakage",
        }[verdict]
        return verdict, detail
