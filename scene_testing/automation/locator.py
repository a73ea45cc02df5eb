"""Pattern matching and candidate description shared by the resolver and simulator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

from .driver.core import SceneNode

Patterns = Union[str, Sequence[str], None]

MATCH_NAME = "name"
MATCH_PATH = "path"
MATCH_TEXT = "text"


def hierarchy_path(node: Optional[SceneNode]) -> str:
    """Return ``/Root/Child/Node`` for a node, or an empty string."""

    if node is None:
        return ""
    names = [node.name]
    names.extend(ancestor.name for ancestor in node.ancestors())
    return "/" + "/".join(reversed(names))


def nearest_text(node: SceneNode) -> Optional[str]:
    """Return the node's own text, else the first descendant text in hierarchy order."""

    for candidate in node.walk():
        if candidate.text is not None:
            return candidate.text
    return None


def is_wildcard_match(subject: Optional[str], pattern: Optional[str]) -> bool:
    """
    Case-insensitive match supporting a single leading or trailing ``*``.

    A wildcard in the middle of the pattern, or more than one wildcard, is not
    supported and never matches.
    """

    if subject is None or pattern is None:
        return False
    if subject == pattern:
        return True
    if not pattern.strip():
        return False
    subject_key = subject.casefold()
    pattern_key = pattern.casefold()
    wildcards = pattern_key.count("*")
    if wildcards == 0:
        return subject_key == pattern_key
    if wildcards == 1:
        remainder = pattern_key.replace("*", "")
        if pattern_key.startswith("*"):
            return subject_key.endswith(remainder)
        if pattern_key.endswith("*"):
            return subject_key.startswith(remainder)
    return False


def normalize_patterns(patterns: Patterns) -> Optional[list[str]]:
    """Turn a single pattern or a sequence into a list; ``None``/empty means "any"."""

    if patterns is None:
        return None
    if isinstance(patterns, str):
        return [patterns] if patterns else None
    cleaned = [str(p) for p in patterns if p]
    return cleaned or None


@dataclass(slots=True)
class CandidateInfo:
    """Derived, per-query attributes of a candidate element."""

    node: SceneNode
    name: str
    path: str
    text: Optional[str]
    parent_name: Optional[str]
    grandparent_name: Optional[str]
    sibling_index: int
    sibling_count: int

    @classmethod
    def describe(cls, node: SceneNode) -> "CandidateInfo":
        parent = node.parent
        grandparent = parent.parent if parent is not None else None
        if parent is not None:
            siblings = [child for child in parent.children if child.name == node.name]
        elif node.scene is not None:
            siblings = [root for root in node.scene.roots if root.name == node.name]
        else:
            siblings = [node]
        sibling_index = next((i for i, s in enumerate(siblings) if s is node), 0)
        return cls(
            node=node,
            name=node.name,
            path=hierarchy_path(node),
            text=nearest_text(node),
            parent_name=parent.name if parent is not None else None,
            grandparent_name=grandparent.name if grandparent is not None else None,
            sibling_index=sibling_index,
            sibling_count=len(siblings),
        )

    def match(self, pattern: str) -> Optional[str]:
        """Return which attribute matched (name, path, text) or ``None``; name wins over path over text."""

        if is_wildcard_match(self.name, pattern):
            return MATCH_NAME
        if is_wildcard_match(self.path, pattern):
            return MATCH_PATH
        if self.text is not None and is_wildcard_match(self.text, pattern):
            return MATCH_TEXT
        return None

    def match_any(self, patterns: Iterable[str]) -> Optional[str]:
        for pattern in patterns:
            matched = self.match(pattern)
            if matched:
                return matched
        return None

    def summary(self) -> str:
        return f"Name: '{self.name}' Path: '{self.path}' Text: '{self.text or ''}'"


def matches(name: Optional[str], path: Optional[str], text: Optional[str], pattern: str) -> bool:
    """Match a candidate's name, hierarchy path and visible text against one pattern."""

    return (
        is_wildcard_match(name, pattern)
        or is_wildcard_match(path, pattern)
        or is_wildcard_match(text, pattern)
    )


def matches_any(name: Optional[str], path: Optional[str], text: Optional[str], patterns: Iterable[str]) -> bool:
    return any(matches(name, path, text, pattern) for pattern in patterns)
