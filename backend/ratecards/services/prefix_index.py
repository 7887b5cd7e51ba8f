"""
Longest-prefix-match index over digit prefixes.

The index is a digit trie built once per rate revision or rule set. A lookup
walks the input one digit at a time and remembers the deepest node that
terminates a stored prefix, so it costs O(len(input)) regardless of how many
prefixes are stored. The empty prefix is allowed and matches every input; it
is how profit rule sets express their catch-all.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from ..dataclasses import Violation
from .errors import ValidationError


class _Node:
    __slots__ = ("children", "terminal")

    def __init__(self) -> None:
        self.children: Dict[str, "_Node"] = {}
        self.terminal = False


class PrefixIndex:
    def __init__(self, prefixes: Iterable[str], allow_empty: bool = True):
        self._root = _Node()
        self._size = 0
        violations: List[Violation] = []
        seen = set()

        for row, prefix in enumerate(prefixes, start=1):
            if prefix is None or (prefix == "" and not allow_empty) or (prefix and not prefix.isdigit()):
                violations.append(Violation(row, "prefix", prefix, "Prefix must be a string of digits"))
                continue
            if prefix in seen:
                violations.append(Violation(row, "prefix", prefix, "Duplicate prefix"))
                continue
            seen.add(prefix)
            self._insert(prefix)

        if violations:
            raise ValidationError("Cannot build prefix index", violations)

    def _insert(self, prefix: str) -> None:
        node = self._root
        for digit in prefix:
            node = node.children.setdefault(digit, _Node())
        node.terminal = True
        self._size += 1

    def longest_match(self, number: str) -> Optional[str]:
        """Return the longest stored prefix that starts `number`, or None."""
        node = self._root
        best = 0 if node.terminal else None
        for depth, digit in enumerate(number or "", start=1):
            node = node.children.get(digit)
            if node is None:
                break
            if node.terminal:
                best = depth
        if best is None:
            return None
        return number[:best]

    def __contains__(self, prefix: str) -> bool:
        node = self._root
        for digit in prefix:
            node = node.children.get(digit)
            if node is None:
                return False
        return node.terminal

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[str]:
        stack = [("", self._root)]
        while stack:
            path, node = stack.pop()
            if node.terminal:
                yield path
            for digit in sorted(node.children, reverse=True):
                stack.append((path + digit, node.children[digit]))
