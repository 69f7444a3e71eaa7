"""
Upstream provenance resolution for patches.

Finds the upstream commit a patch was taken from, expands abbreviated ids to
full length against the canonical mirror, and looks up the release tag that
first contains the commit.
"""

from typing import Optional

from kpreflight.common import logger
from kpreflight.matchers import extract_commit_id, replace_commit_id
from kpreflight.models import FULL_SHA_LENGTH, MAINLINE_TAG, PatchFile, Provenance
from kpreflight.ports import MirrorService


class ProvenanceResolver:
    """
    Resolves the upstream origin of patches against a canonical mirror.

    Expansion and tag lookup failures are not fatal: the short id is kept and
    the tag falls back to the "mainline" sentinel.
    """

    def __init__(self, mirror: MirrorService):
        self.mirror = mirror

    def find_commit_id(self, text: str) -> Optional[str]:
        """Commit id referenced in patch text, as written (may be short)."""
        match = extract_commit_id(text)
        if match is None:
            return None
        logger.debug(f"Commit id {match.value} found by rule '{match.rule}'")
        return match.value

    def expand(self, commit_id: str) -> Optional[str]:
        """Full-length id for commit_id, or None if the mirror cannot tell."""
        if len(commit_id) == FULL_SHA_LENGTH:
            return commit_id
        try:
            full_id = self.mirror.resolve_short_id(commit_id)
        except Exception as e:
            logger.warning(f"Upstream mirror lookup failed for {commit_id}: {e}")
            return None
        if full_id and len(full_id) == FULL_SHA_LENGTH:
            return full_id
        return None

    def resolve(self, patch: PatchFile, mutate: bool = True) -> Optional[str]:
        """
        Resolve the upstream commit id of a patch.

        Args:
            patch: Patch to inspect
            mutate: Replace the short id with the full id in patch.text

        Returns:
            Full commit id, the original short id if expansion failed, or None
        """
        commit_id = self.find_commit_id(patch.text)
        if commit_id is None or len(commit_id) == FULL_SHA_LENGTH:
            return commit_id

        full_id = self.expand(commit_id)
        if full_id is None:
            logger.warning(f"Could not expand short commit ID {commit_id} to full SHA")
            return commit_id

        if mutate:
            patch.text = replace_commit_id(patch.text, commit_id, full_id)
            logger.debug(f"{patch.name}: replaced {commit_id} with {full_id}")
        return full_id

    def tag_for(self, commit_id: str) -> str:
        """
        Release tag containing a commit.

        Returns:
            Tag name such as "v6.2" or "v6.4-rc1", or "mainline" if not released
        """
        tag = None
        try:
            described = self.mirror.describe_contains(commit_id)
            if described:
                tag = described.split("~", 1)[0].split("^", 1)[0]
            if not tag:
                described = self.mirror.describe_tags(commit_id)
                if described:
                    tag = described.split("-", 1)[0]
        except Exception as e:
            logger.warning(f"Tag lookup failed for {commit_id}: {e}")
            tag = None

        if not tag:
            logger.debug(f"No release tag contains {commit_id}, using '{MAINLINE_TAG}'")
            return MAINLINE_TAG
        return tag

    def provenance_for(self, patch: PatchFile, mutate: bool = True) -> Optional[Provenance]:
        """Resolve commit id and tag together."""
        commit_id = self.resolve(patch, mutate=mutate)
        if commit_id is None:
            return None
        return Provenance(commit=commit_id, tag=self.tag_for(commit_id))
