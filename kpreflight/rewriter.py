"""
Patch header rewriting with distribution provenance metadata.

The metadata block goes right after the Subject header block of the mail
formatted patch, and the operator's sign-off goes right before the first
"---" line. Both steps are skipped when their output is already present, so
rewriting an already rewritten patch returns it unchanged.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from kpreflight.common import logger
from kpreflight.config import DistroProfile, PreflightConfig
from kpreflight.models import Classification, Provenance


DIFFSTAT_MARKER = "---"


@dataclass(frozen=True)
class HeaderMetadata:
    """Caller supplied values for the metadata block and sign-off."""
    category: str
    issue_id: str
    signoff: str
    profile: DistroProfile

    @classmethod
    def from_config(cls, config: PreflightConfig) -> "HeaderMetadata":
        return cls(
            category=config.patch_category,
            issue_id=config.bugzilla_id,
            signoff=config.signoff_line,
            profile=config.profile,
        )


def _split(text: str) -> Tuple[List[str], bool]:
    trailing = text.endswith("\n")
    lines = text.split("\n")
    if trailing:
        lines = lines[:-1]
    return lines, trailing


def _join(lines: List[str], trailing: bool) -> str:
    return "\n".join(lines) + ("\n" if trailing else "")


def message_lines(lines: List[str]) -> List[str]:
    """Lines of the commit message, i.e. everything before the first '---'."""
    for idx, line in enumerate(lines):
        if line == DIFFSTAT_MARKER:
            return lines[:idx]
    return lines


def mainline_block(provenance: Provenance, meta: HeaderMetadata) -> List[str]:
    profile = meta.profile
    return [
        profile.mainline_marker,
        f"from mainline-{provenance.tag}",
        f"commit {provenance.commit}",
        f"category: {meta.category}",
        f"bugzilla: {profile.issue_url(meta.issue_id)}",
        f"CVE: {profile.cve_placeholder}",
        "",
        f"Reference: {profile.reference_url(provenance.commit)}",
        "",
        profile.separator,
        "",
    ]


def fix_block(meta: HeaderMetadata) -> List[str]:
    profile = meta.profile
    return [
        profile.fix_marker,
        f"category: {meta.category}",
        f"bugzilla: {profile.issue_url(meta.issue_id)}",
        "",
        profile.separator,
        "",
    ]


def is_annotated(text: str, meta: HeaderMetadata) -> bool:
    """True if the commit message already carries a metadata block."""
    lines, _ = _split(text)
    markers = {meta.profile.mainline_marker, meta.profile.fix_marker}
    return any(line in markers for line in message_lines(lines))


def insert_block(text: str, block: List[str]) -> str:
    """Insert block after the Subject header block, replacing its blank line."""
    lines, trailing = _split(text)
    subject_idx = next((i for i, line in enumerate(lines) if line.startswith("Subject:")), None)
    if subject_idx is None:
        logger.debug("No Subject header, metadata block not inserted")
        return text

    for idx in range(subject_idx + 1, len(lines)):
        if lines[idx] == "":
            new_lines = lines[:idx] + [""] + block + lines[idx + 1:]
            return _join(new_lines, trailing)

    # Headers run to the end of the text
    return _join(lines + [""] + block, True)


def add_signoff(text: str, signoff: str) -> str:
    """Insert signoff before the first '---' line, or append it at the end."""
    if signoff in text:
        return text
    lines, trailing = _split(text)
    for idx, line in enumerate(lines):
        if line == DIFFSTAT_MARKER:
            return _join(lines[:idx] + [signoff] + lines[idx:], trailing)
    return _join(lines + ["", signoff], True)


class HeaderRewriter:
    """Applies metadata blocks and sign-offs to patch text."""

    def __init__(self, meta: HeaderMetadata):
        self.meta = meta

    def block_for(
        self,
        classification: Classification,
        provenance: Optional[Provenance],
    ) -> Optional[List[str]]:
        """Metadata block lines for a classification, or None for no block."""
        if classification == Classification.INTERFACE_FIX:
            return fix_block(self.meta)
        if classification == Classification.MAINLINE_DERIVED and provenance is not None:
            return mainline_block(provenance, self.meta)
        return None

    def annotate(
        self,
        text: str,
        classification: Classification,
        provenance: Optional[Provenance] = None,
    ) -> str:
        """
        Return text with the metadata block and sign-off applied.

        Args:
            text: Patch text
            classification: Patch classification
            provenance: Resolved upstream identity (mainline patches only)

        Returns:
            Rewritten patch text
        """
        block = self.block_for(classification, provenance)
        if block is not None and not is_annotated(text, self.meta):
            text = insert_block(text, block)
        return add_signoff(text, self.meta.signoff)
