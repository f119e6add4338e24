"""
Content Fingerprinter — bytes in, stable digest out.

A fingerprint depends only on content, never on where the content sits in a
file, so a range fingerprint stays valid when surrounding lines move.
SHA-256 here guards against accidental loss, not adversarial tampering.
"""

import difflib
import hashlib
from typing import List, Optional, Union

from intent_kernel.models.ledger import ContentRange

Content = Union[bytes, str]


def fingerprint(content: Content) -> str:
    """SHA-256 hex digest of content. Text is encoded as UTF-8."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def verify_fingerprint(content: Content, expected: str) -> bool:
    return fingerprint(content) == expected


def _lines(text: Optional[str]) -> List[str]:
    return text.splitlines(keepends=True) if text else []


def changed_ranges(before: Optional[str], after: Optional[str]) -> List[ContentRange]:
    """
    Changed line spans of `after` relative to `before`, 1-based and inclusive.

    New content with no prior version, or a change that only removed lines,
    is reported as a single whole-file range. Deleted content has no ranges.
    """
    if after is None:
        return []

    new_lines = _lines(after)
    whole = ContentRange(
        start_line=1,
        end_line=max(len(new_lines), 1),
        content_hash=fingerprint(after),
    )
    if before is None:
        return [whole]

    matcher = difflib.SequenceMatcher(a=_lines(before), b=new_lines, autojunk=False)
    ranges = []
    for tag, _i1, _i2, j1, j2 in matcher.get_opcodes():
        if tag in ("replace", "insert") and j2 > j1:
            ranges.append(ContentRange(
                start_line=j1 + 1,
                end_line=j2,
                content_hash=fingerprint("".join(new_lines[j1:j2])),
            ))
    return ranges or [whole]
