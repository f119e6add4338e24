"""
Mutation classifier — heuristic stand-in for structural diffing.

Decision rule of the default strategy, in order:
  1. an explicit intent-changed signal          -> INTENT_EVOLUTION
  2. a new file, or a deleted one               -> INTENT_EVOLUTION
  3. relative line-count delta over threshold   -> INTENT_EVOLUTION
  4. otherwise                                  -> AST_REFACTOR

False positives and negatives are expected; this is not a correctness oracle.
Strategies share one interface so the pipeline and ledger schema never
depend on which one is in use.
"""

import re
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Optional, Set

from intent_kernel.models.ledger import MutationClass

DEFAULT_EVOLUTION_THRESHOLD = 0.2


class MutationClassifier(ABC):
    @abstractmethod
    def classify(
        self,
        resource: str,
        before: Optional[str],
        after: Optional[str],
        intent_changed: bool = False,
    ) -> MutationClass:
        """Classify one resource mutation. None means the file did not exist."""


def _line_count(text: str) -> int:
    return text.count("\n") + 1


def relative_line_delta(before: str, after: str) -> float:
    old_lines = _line_count(before)
    new_lines = _line_count(after)
    return abs(old_lines - new_lines) / max(old_lines, new_lines)


class LineDeltaClassifier(MutationClassifier):
    """Default strategy: line-count delta against a fixed relative threshold."""

    def __init__(self, threshold: float = DEFAULT_EVOLUTION_THRESHOLD):
        self.threshold = threshold

    def classify(self, resource, before, after, intent_changed=False):
        if intent_changed:
            return MutationClass.INTENT_EVOLUTION
        if before is None or after is None:
            return MutationClass.INTENT_EVOLUTION
        if relative_line_delta(before, after) > self.threshold:
            return MutationClass.INTENT_EVOLUTION
        return MutationClass.AST_REFACTOR


# Top-level declarations that widen a module's visible surface
_EXPORT_PATTERNS = [
    re.compile(r"^export\s+(?:default\s+)?(?:async\s+)?(?:function|class|const|let|var|interface|type|enum)\s+(\w+)", re.M),
    re.compile(r"^(?:async\s+)?def\s+([A-Za-z]\w*)", re.M),
    re.compile(r"^class\s+([A-Za-z]\w*)", re.M),
    re.compile(r"""^\s*@(?:\w+\.)*(?:route|get|post|put|patch|delete)\(\s*["']([^"']+)""", re.M),
]

DOC_SUFFIXES = {".md", ".rst", ".txt", ".adoc"}
CONFIG_SUFFIXES = {".yaml", ".yml", ".json", ".toml", ".ini", ".cfg", ".env"}


def exported_symbols(text: Optional[str]) -> Set[str]:
    if not text:
        return set()
    names = set()
    for pattern in _EXPORT_PATTERNS:
        names.update(m.group(1) for m in pattern.finditer(text))
    return names


class SurfaceClassifier(LineDeltaClassifier):
    """
    Line-delta strategy that also looks at what kind of file changed.

    Documentation and configuration edits get their own classes, and a new
    exported symbol or route is intent evolution regardless of size.
    """

    def classify(self, resource, before, after, intent_changed=False):
        if intent_changed or before is None or after is None:
            return MutationClass.INTENT_EVOLUTION

        suffix = PurePosixPath(resource).suffix.lower()
        if suffix in DOC_SUFFIXES:
            return MutationClass.DOC_UPDATE
        if suffix in CONFIG_SUFFIXES:
            return MutationClass.CONFIG_CHANGE

        if exported_symbols(after) - exported_symbols(before):
            return MutationClass.INTENT_EVOLUTION
        return super().classify(resource, before, after, intent_changed)


def build_classifier(name: str, threshold: float = DEFAULT_EVOLUTION_THRESHOLD) -> MutationClassifier:
    if name == "surface":
        return SurfaceClassifier(threshold)
    if name == "line_delta":
        return LineDeltaClassifier(threshold)
    raise ValueError(f"Unknown classifier strategy: {name}")
