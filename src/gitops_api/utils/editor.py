# ABOUTME: Path-addressed editing of YAML cluster specifications
# ABOUTME: Applies set/append/clear edits in memory and detects structural changes

"""
Path-addressed YAML editing.

=============================================================================
PATH EXPRESSIONS
=============================================================================

Dot-separated mapping keys, each optionally followed by bracket suffixes:

    spec.state                  -> mapping key
    spec.template.metadata.name -> nested mapping keys
    spec.nodes[0].size          -> sequence index, then key
    spec.profiles[+]            -> append to the sequence at spec.profiles

=============================================================================
CHANGE DETECTION
=============================================================================

A document is loaded with ruamel.yaml in round-trip mode (comments, key order
and quoting survive a save). At load time a plain-data snapshot is taken;
`changed` compares the current content against it structurally. Formatting
differences therefore never count as a change, and an unchanged document is
never written back.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError

from gitops_api.errors import ValidationError, WorkspaceError

if TYPE_CHECKING:
    from pathlib import Path

APPEND = "+"

_KEY_RE = re.compile(r"^([^.\[\]]+)((?:\[(?:\d+|\+)\])*)$")
_INDEX_RE = re.compile(r"\[(\d+|\+)\]")


@dataclass(frozen=True)
class PathSegment:
    """One step of a path: a mapping key, a sequence index or the append marker."""

    key: str | None = None
    index: int | None = None
    append: bool = False

    def __str__(self) -> str:
        if self.key is not None:
            return self.key
        if self.append:
            return "[+]"
        return f"[{self.index}]"


def parse_path(expression: str) -> list[PathSegment]:
    """
    Parse a path expression into segments.

    Raises:
        ValidationError: Empty or malformed expression, or [+] anywhere but
            at the very end.
    """
    if not expression or not expression.strip():
        raise ValidationError("empty path expression", operation="parse_path")

    segments: list[PathSegment] = []
    for part in expression.split("."):
        match = _KEY_RE.match(part)
        if not match:
            raise ValidationError(f"malformed path expression {expression!r}", operation="parse_path")
        segments.append(PathSegment(key=match.group(1)))
        for token in _INDEX_RE.findall(match.group(2)):
            if token == APPEND:
                segments.append(PathSegment(append=True))
            else:
                segments.append(PathSegment(index=int(token)))

    if any(seg.append for seg in segments[:-1]):
        raise ValidationError(
            f"[+] is only allowed at the end of a path: {expression!r}",
            operation="parse_path",
        )
    return segments


def to_plain(node: Any) -> Any:
    """Convert ruamel containers and scalar subclasses into plain Python data."""
    if isinstance(node, Mapping):
        return {str(k): to_plain(v) for k, v in node.items()}
    if isinstance(node, list):
        return [to_plain(v) for v in node]
    if isinstance(node, bool) or node is None:
        return node
    if isinstance(node, str):
        return str(node)
    if isinstance(node, int):
        return int(node)
    if isinstance(node, float):
        return float(node)
    return node


class YamlDocument:
    """A YAML file loaded for editing."""

    def __init__(self, path: Path, yaml: YAML, data: Any, original: Any) -> None:
        self.path = path
        self._yaml = yaml
        self.data = data
        self._original = original

    # -------------------------------------------------------------------------
    # READ
    # -------------------------------------------------------------------------

    def get(self, expression: str) -> Any:
        """Return the plain value at expression, or None when absent."""
        node = self.data
        for segment in parse_path(expression):
            if segment.append:
                raise ValidationError(f"cannot read {expression!r}", operation="get")
            node = self._child(node, segment)
            if node is None:
                return None
        return to_plain(node)

    @property
    def changed(self) -> bool:
        """True when the content differs structurally from what was loaded."""
        return to_plain(self.data) != self._original

    # -------------------------------------------------------------------------
    # EDIT
    # -------------------------------------------------------------------------

    def set_field(self, expression: str, value: Any) -> None:
        """
        Set the node addressed by expression to value.

        Missing intermediate mappings are created. A trailing [+] appends.
        """
        segments = parse_path(expression)
        if segments[-1].append:
            self._append(segments[:-1], value, expression)
            return
        parent = self._resolve_parent(segments, expression)
        self._assign(parent, segments[-1], value, expression)

    def append_to_sequence(self, expression: str, value: Any) -> None:
        """Append value to the sequence at expression (created if missing or null)."""
        segments = parse_path(expression)
        if segments[-1].append:
            segments = segments[:-1]
        self._append(segments, value, expression)

    def clear_sequence(self, expression: str) -> None:
        """Replace the node at expression with an empty sequence."""
        segments = parse_path(expression)
        if segments[-1].append:
            raise ValidationError(f"cannot clear {expression!r}", operation="clear_sequence")
        parent = self._resolve_parent(segments, expression)
        self._assign(parent, segments[-1], CommentedSeq(), expression)

    def save(self) -> None:
        """Write the document back to its file."""
        try:
            with self.path.open("w") as f:
                self._yaml.dump(self.data, f)
        except OSError as e:
            raise WorkspaceError(f"cannot write {self.path.name}: {e}", operation="save") from e

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    def _append(self, segments: list[PathSegment], value: Any, expression: str) -> None:
        parent = self._resolve_parent(segments, expression)
        last = segments[-1]
        current = self._child(parent, last)
        if current is None:
            current = CommentedSeq()
            self._assign(parent, last, current, expression)
        if not isinstance(current, list):
            raise ValidationError(
                f"{expression!r} does not address a sequence",
                operation="append_to_sequence",
            )
        current.append(value)

    def _resolve_parent(self, segments: list[PathSegment], expression: str) -> Any:
        """Walk to the container holding the last segment, creating mappings."""
        if self.data is None:
            self.data = CommentedMap()
        node = self.data
        for segment in segments[:-1]:
            child = self._child(node, segment)
            if child is None:
                if segment.key is None:
                    raise ValidationError(
                        f"index {segment} out of range in {expression!r}",
                        operation="resolve_path",
                    )
                child = CommentedMap()
                self._assign(node, segment, child, expression)
            node = child
        return node

    @staticmethod
    def _child(node: Any, segment: PathSegment) -> Any:
        if segment.key is not None:
            if not isinstance(node, Mapping):
                return None
            return node.get(segment.key)
        if isinstance(node, list) and segment.index is not None and segment.index < len(node):
            return node[segment.index]
        return None

    @staticmethod
    def _assign(node: Any, segment: PathSegment, value: Any, expression: str) -> None:
        if segment.key is not None:
            if not isinstance(node, Mapping):
                raise ValidationError(
                    f"{expression!r} traverses a non-mapping value at {segment}",
                    operation="resolve_path",
                )
            node[segment.key] = value
            return
        if not isinstance(node, list) or segment.index is None or segment.index >= len(node):
            raise ValidationError(
                f"index {segment} out of range in {expression!r}",
                operation="resolve_path",
            )
        node[segment.index] = value


class DocumentEditor(Protocol):
    """Opens structured documents for path-addressed editing."""

    def open(self, path: Path) -> YamlDocument: ...


class YamlPathEditor:
    """ruamel.yaml implementation of DocumentEditor."""

    def __init__(self, indent: int = 2) -> None:
        self._indent = indent

    def _yaml(self) -> YAML:
        yaml = YAML()
        yaml.preserve_quotes = True
        yaml.indent(mapping=self._indent, sequence=self._indent + 2, offset=self._indent)
        return yaml

    def open(self, path: Path) -> YamlDocument:
        """
        Load path for editing.

        Raises:
            WorkspaceError: The file is missing, unreadable or not valid YAML.
        """
        yaml = self._yaml()
        try:
            with path.open() as f:
                data = yaml.load(f)
        except OSError as e:
            raise WorkspaceError(f"cannot read {path.name}: {e}", operation="open_document") from e
        except YAMLError as e:
            raise WorkspaceError(f"{path.name} is not valid YAML: {e}", operation="open_document") from e

        if data is not None and not isinstance(data, Mapping):
            raise ValidationError(
                f"{path.name} must contain a mapping at the top level",
                operation="open_document",
            )
        return YamlDocument(path, yaml, data, to_plain(data))
