"""
Named text extraction rules used on patch text.

Rules are plain regular expressions with a name attached so callers can tell
which rule matched. They work on strings only and never touch the file system.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Tuple
import re


@dataclass(frozen=True)
class ExtractionRule:
    """A named pattern whose first group is the extracted value."""
    name: str
    pattern: Pattern

    def find(self, text: str) -> Optional[str]:
        match = self.pattern.search(text)
        return match.group(1) if match else None


@dataclass(frozen=True)
class RuleMatch:
    rule: str
    value: str


class RuleChain:
    """Ordered extraction rules; the first rule that matches wins."""

    def __init__(self, rules: Iterable[ExtractionRule]):
        self.rules: Tuple[ExtractionRule, ...] = tuple(rules)

    def first(self, text: str) -> Optional[RuleMatch]:
        for rule in self.rules:
            value = rule.find(text)
            if value is not None:
                return RuleMatch(rule=rule.name, value=value)
        return None


_HEX_ID = r"([0-9a-f]{7,40})"

# "commit <id> upstream", as written by stable backports
UPSTREAM_SUFFIX_RULE = ExtractionRule(
    name="upstream-suffix",
    pattern=re.compile(rf"\bcommit {_HEX_ID} upstream\b"),
)

# "commit <id>" as the only token on its line
COMMIT_LINE_RULE = ExtractionRule(
    name="commit-line",
    pattern=re.compile(rf"^commit {_HEX_ID}[ \t]*$", re.MULTILINE),
)

COMMIT_ID_RULES = RuleChain([UPSTREAM_SUFFIX_RULE, COMMIT_LINE_RULE])


class KeywordMatcher:
    """Case-insensitive keyword search."""

    def __init__(self, name: str, keywords: Iterable[str]):
        self.name = name
        self.keywords: Tuple[str, ...] = tuple(k.lower() for k in keywords)

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.keywords)


FIX_KEYWORDS = KeywordMatcher("kabi-fix", ["kabi", "kapi"])


def extract_commit_id(text: str) -> Optional[RuleMatch]:
    """Find the upstream commit id referenced by a patch, if any."""
    return COMMIT_ID_RULES.first(text)


def replace_commit_id(text: str, short_id: str, full_id: str) -> str:
    """Replace every standalone occurrence of short_id with full_id."""
    pattern = re.compile(rf"(?<![0-9a-fA-F]){re.escape(short_id)}(?![0-9a-fA-F])")
    return pattern.sub(full_id, text)


def extract_subject(text: str) -> str:
    """Subject header of a mail-formatted patch, unfolded."""
    lines = text.splitlines()
    for idx, line in enumerate(lines):
        if not line.startswith("Subject:"):
            continue
        parts = [line[len("Subject:"):].strip()]
        for cont in lines[idx + 1:]:
            if cont[:1] in (" ", "\t"):
                parts.append(cont.strip())
            else:
                break
        return " ".join(p for p in parts if p)
    return ""


def find_header_lines(text: str, prefix: str) -> List[str]:
    """All lines of text starting with prefix."""
    return [line for line in text.splitlines() if line.startswith(prefix)]
