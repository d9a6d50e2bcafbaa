"""Minimal-diff edit application and line accounting."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from pathlib import Path

from ..errors import EditConflict
from ..models import Change, Edit
from .snapshot import resolve_in_project


@dataclass
class LineDelta:
    added: int = 0
    removed: int = 0

    def __iadd__(self, other: LineDelta) -> LineDelta:
        self.added += other.added
        self.removed += other.removed
        return self


def apply_edit(content: str, edit: Edit, *, exists: bool = True) -> str:
    """Replace the single occurrence of ``edit.old`` with ``edit.new``.

    Raises:
        EditConflict: If the anchor is missing, ambiguous, or empty for an
            existing file
    """
    if not exists:
        if edit.old:
            raise EditConflict(
                f"{edit.path} does not exist but the edit expects existing text",
                path=edit.path,
            )
        return edit.new

    if not edit.old:
        raise EditConflict(
            f"Empty anchor for existing file {edit.path}; edits must not replace whole documents",
            path=edit.path,
        )

    occurrences = content.count(edit.old)
    if occurrences != 1:
        reason = "not found" if occurrences == 0 else f"found {occurrences} times"
        raise EditConflict(f"Edit anchor {reason} in {edit.path}", path=edit.path, occurrences=occurrences)
    return content.replace(edit.old, edit.new, 1)


def count_lines(before: str, after: str) -> LineDelta:
    """Exact added/removed line counts between two versions of a file."""
    delta = LineDelta()
    for line in difflib.unified_diff(before.splitlines(), after.splitlines(), lineterm="", n=0):
        if line.startswith("+++") or line.startswith("---"):
            continue
        if line.startswith("+"):
            delta.added += 1
        elif line.startswith("-"):
            delta.removed += 1
    return delta


def _read_text(target: Path, relative: str) -> str:
    try:
        return target.read_bytes().decode("utf-8")
    except UnicodeDecodeError as e:
        raise EditConflict(f"{relative} is not valid UTF-8", path=relative, reason=str(e)) from e
    except OSError as e:
        raise EditConflict(f"Cannot read {relative}: {e}", path=relative, reason=e.strerror or str(e)) from e


def apply_change(project_path: Path, change: Change) -> dict[str, LineDelta]:
    """Apply every edit of ``change`` to the working tree.

    Edits to the same file are applied in order against the evolving
    content. All edits are computed before any file is written, so an
    anchor conflict or an unreadable file leaves the tree untouched.

    Returns:
        Per-file line deltas
    """
    originals: dict[str, str] = {}
    updated: dict[str, str] = {}

    for edit in change.edits:
        target = resolve_in_project(project_path, edit.path)
        if edit.path not in updated:
            if target.is_file():
                originals[edit.path] = _read_text(target, edit.path)
                updated[edit.path] = originals[edit.path]
            else:
                originals[edit.path] = ""
                updated[edit.path] = apply_edit("", edit, exists=False)
                continue
        updated[edit.path] = apply_edit(updated[edit.path], edit)

    deltas: dict[str, LineDelta] = {}
    for path, content in updated.items():
        target = resolve_in_project(project_path, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content.encode("utf-8"))
        except OSError as e:
            raise EditConflict(f"Cannot write {path}: {e}", path=path, reason=e.strerror or str(e)) from e
        deltas[path] = count_lines(originals[path], content)
    return deltas
