"""
Commit message format verification for an applied series.

Checks that each of the last N commits of the kernel tree carries the
metadata block and the operator's sign-off written by the header rewriter.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from kpreflight.common import logger
from kpreflight.config import DistroProfile
from kpreflight.matchers import FIX_KEYWORDS, find_header_lines
from kpreflight.ports import MirrorService, VcsService


FULL_COMMIT_LINE = re.compile(r"^commit ([0-9a-f]{40})", re.MULTILINE)


@dataclass
class FormatResult:
    """Format check outcome for one commit."""
    commit: str
    subject: str
    errors: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors


def _has_line(lines: List[str], prefix: str) -> bool:
    return any(line.startswith(prefix) for line in lines)


class FormatChecker:
    """Verifies metadata headers and sign-offs of applied commits."""

    def __init__(
        self,
        tree: VcsService,
        mirror: Optional[MirrorService],
        profile: DistroProfile,
        signoff: str,
    ):
        self.tree = tree
        self.mirror = mirror
        self.profile = profile
        self.signoff = signoff

    def _required_fields(self, is_fix: bool):
        profile = self.profile
        issue_prefix = f"bugzilla: {profile.issue_base_url}"
        if is_fix:
            return [
                (profile.fix_marker, f"Missing '{profile.fix_marker}' header"),
                ("category:", "Missing 'category:' line"),
                (issue_prefix, "Missing or incorrect 'bugzilla:' line"),
                (profile.separator, f"Missing separator line '{profile.separator}'"),
            ]
        return [
            (profile.mainline_marker, f"Missing '{profile.mainline_marker}' header"),
            ("from mainline-", "Missing 'from mainline-' line"),
            ("category:", "Missing 'category:' line"),
            (issue_prefix, "Missing or incorrect 'bugzilla:' line"),
            ("CVE:", "Missing 'CVE:' line"),
            (f"Reference: {profile.reference_base_url}", "Missing 'Reference:' line"),
            (profile.separator, f"Missing separator line '{profile.separator}'"),
        ]

    def _upstream_last_signoff(self, commit: str) -> Optional[str]:
        if self.mirror is None:
            return None
        message = self.mirror.commit_message(commit)
        if not message:
            return None
        sobs = find_header_lines(message, "Signed-off-by:")
        return sobs[-1] if sobs else None

    def check_message(self, commit: str, message: str) -> FormatResult:
        lines = message.splitlines()
        subject = lines[0] if lines else ""
        result = FormatResult(commit=commit, subject=subject)

        upstream = FULL_COMMIT_LINE.search(message)
        is_fix = upstream is None and FIX_KEYWORDS.matches(subject)

        for prefix, error in self._required_fields(is_fix):
            if not _has_line(lines, prefix):
                result.errors.append(error)
        if not is_fix and upstream is None:
            result.errors.append("Missing upstream commit ID")

        if not _has_line(lines, self.signoff):
            result.errors.append(f"Missing expected {self.signoff}")
        elif upstream is not None:
            sobs = find_header_lines(message, "Signed-off-by:")
            current_last = sobs[-1] if sobs else ""
            upstream_last = self._upstream_last_signoff(upstream.group(1))
            if upstream_last and current_last == upstream_last:
                result.errors.append("New Signed-off-by line not added (last SOB matches upstream)")
            elif current_last != self.signoff:
                result.errors.append(
                    f"Last Signed-off-by does not match expected: {self.signoff} (found: {current_last})"
                )
        return result

    def check(self, count: int, log_file: Optional[Path] = None) -> List[FormatResult]:
        """Check the last count commits, newest first."""
        commits = self.tree.recent_commit_messages(count)
        if not commits:
            logger.warning("No commits to check")
            return []

        logger.info(f"Checking {len(commits)} commits for proper format...")
        results = [self.check_message(sha, message) for sha, message in commits]

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "w") as f:
                for result in results:
                    f.write(f"Checking commit: {result.commit[:12]} - {result.subject}\n---\n")
                    for error in result.errors:
                        f.write(f"  ✗ {error}\n")
                    f.write(f"  Result: {'PASS' if result.passed else 'FAIL'}\n\n")

        failed = sum(1 for r in results if not r.passed)
        if failed:
            logger.warning(f"{failed} commit(s) have format errors")
        return results
