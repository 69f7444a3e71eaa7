"""
Symbol-diff oracles comparing two Module.symvers manifests.

Both oracles produce a text report; a report containing BREAKAGE_MARKER means
the interface changed incompatibly.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional

from kpreflight.common import logger, run_command


BREAKAGE_MARKER = "ERROR - ABI BREAKAGE WAS DETECTED"


def has_breakage(report: str) -> bool:
    return BREAKAGE_MARKER in report


class OracleError(Exception):
    """The comparison tool ran but produced no usable verdict."""


class CheckKabiOracle:
    """
    Runs the kernel tree's own scripts/check-kabi.

    Distribution trees ship the script for Python 2; a python2 interpreter is
    used when one is installed, otherwise the current interpreter.
    """

    name = "check-kabi"

    def __init__(self, tree: Path, interpreter: Optional[str] = None):
        self.script = Path(tree) / "scripts" / "check-kabi"
        self.tree = Path(tree)
        self._interpreter = interpreter

    @property
    def interpreter(self) -> str:
        if self._interpreter is None:
            returncode, stdout, _ = run_command(["which", "python2"])
            self._interpreter = stdout.strip() if returncode == 0 and stdout.strip() else sys.executable
            logger.debug(f"Running check-kabi with {self._interpreter}")
        return self._interpreter

    def available(self) -> bool:
        return self.script.is_file()

    def compare(self, baseline: Path, current: Path) -> str:
        """
        Raises:
            OracleError: the script exited non-zero without reporting a breakage
        """
        returncode, stdout, stderr = run_command(
            [self.interpreter, self.script, "-k", baseline, "-s", current],
            cwd=self.tree,
        )
        report = stdout + stderr
        if returncode != 0 and not has_breakage(report):
            last_line = report.strip().splitlines()[-1] if report.strip() else "no output"
            raise OracleError(f"check-kabi exited with {returncode}: {last_line}")
        return report


def read_symvers(path: Path) -> Dict[str, str]:
    """Map exported symbol name to CRC from a Module.symvers file."""
    symbols: Dict[str, str] = {}
    with open(path, "r") as f:
        for line in f:
            if line.startswith("["):
                continue
            fields = line.split()
            if len(fields) < 2:
                continue
            symbols[fields[1]] = fields[0]
    return symbols


class SymversOracle:
    """In-process comparison of exported symbols and their CRCs."""

    name = "symvers"

    def available(self) -> bool:
        return True

    def compare(self, baseline: Path, current: Path) -> str:
        old = read_symvers(baseline)
        new = read_symvers(current)

        problems: List[str] = []
        for symbol in sorted(old):
            if symbol not in new:
                problems.append(f"*** ERROR - symbol {symbol} removed")
            elif new[symbol] != old[symbol]:
                problems.append(
                    f"*** ERROR - CRC of {symbol} changed from {old[symbol]} to {new[symbol]}"
                )
        added = len(set(new) - set(old))

        lines = [f"{len(old)} symbols in baseline, {len(new)} symbols now, {added} added"]
        lines.extend(problems)
        if problems:
            lines.append(BREAKAGE_MARKER)
        return "\n".join(lines) + "\n"


def select_oracle(kind: str, tree: Path):
    """Oracle for a KABI_ORACLE setting: auto, check-kabi or symvers."""
    if kind == "symvers":
        return SymversOracle()
    check_kabi = CheckKabiOracle(tree)
    if kind == "check-kabi" or check_kabi.available():
        return check_kabi
    logger.info("check-kabi script not found, comparing Module.symvers directly")
    return SymversOracle()
