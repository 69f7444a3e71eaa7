"""
Patch classification: mainline-derived, KABI fix, or unclassified.
"""

from kpreflight.common import logger
from kpreflight.matchers import FIX_KEYWORDS, KeywordMatcher
from kpreflight.models import Classification, PatchFile
from kpreflight.provenance import ProvenanceResolver


class PatchClassifier:
    """Classifies patches without modifying them."""

    def __init__(self, resolver: ProvenanceResolver, keywords: KeywordMatcher = FIX_KEYWORDS):
        self.resolver = resolver
        self.keywords = keywords

    def classify(self, patch: PatchFile) -> Classification:
        """
        Classify a patch.

        A patch referencing an upstream commit is mainline-derived. A patch with
        no upstream reference whose subject names a KABI/KAPI fix is a fix patch.
        Anything else is unclassified and receives no metadata block.
        """
        # Only the commit token is needed here, so no mirror round trip
        commit_id = self.resolver.find_commit_id(patch.text)
        if commit_id is not None:
            return Classification.MAINLINE_DERIVED
        if self.keywords.matches(patch.subject):
            return Classification.INTERFACE_FIX
        logger.warning(f"{patch.name}: no upstream commit and no KABI fix keyword in subject")
        return Classification.UNCLASSIFIED
