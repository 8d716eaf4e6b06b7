# FILE: patchgate/deployment/manifest.py
"""Module manifest editing.

Two manifest shapes are supported:
- XML project manifests (.csproj, .vbproj, .fsproj, .props). SDK-style
  projects include source files automatically and are never edited;
  classic projects get one <Compile Include="..." /> line per new file.
- Line-list manifests: one relative path per line, '#' starts a comment.

Edits are textual insertions/removals so everything else in the file
(formatting, comments, ordering) stays exactly as it was.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Sequence, Tuple

from patchgate.deployment.schemas import ManifestUpdateResult

logger = logging.getLogger(__name__)

XML_MANIFEST_SUFFIXES = {".csproj", ".vbproj", ".fsproj", ".props"}

_SDK_PROJECT = re.compile(r"<Project\b[^>]*\bSdk\s*=", re.IGNORECASE)
_COMPILE_ITEM = re.compile(
    r"<Compile\b[^>]*?\bInclude\s*=\s*\"([^\"]*)\"[^>]*?(?:/>|>.*?</Compile\s*>)",
    re.IGNORECASE | re.DOTALL,
)
_PROJECT_CLOSE = re.compile(r"^([ \t]*)</Project\s*>", re.IGNORECASE | re.MULTILINE)


def is_xml_manifest(manifest_path: str) -> bool:
    return Path(manifest_path).suffix.lower() in XML_MANIFEST_SUFFIXES


def is_sdk_style(text: str) -> bool:
    return bool(_SDK_PROJECT.search(text))


def manifest_entry(manifest_path: str, target_path: str) -> str:
    """Entry text for `target_path` as written into `manifest_path`."""
    rel = os.path.relpath(target_path, os.path.dirname(os.path.abspath(manifest_path)))
    if is_xml_manifest(manifest_path):
        return rel.replace("/", "\\")
    return rel.replace("\\", "/")


def _same_entry(a: str, b: str) -> bool:
    return a.replace("\\", "/").strip().lower() == b.replace("\\", "/").strip().lower()


def _newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def _line_bounds(text: str, start: int, end: int) -> Tuple[int, int]:
    """Expand [start, end) to whole lines including the trailing newline."""
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", end)
    line_end = len(text) if line_end == -1 else line_end + 1
    return line_start, line_end


# =============================================================================
# XML manifests
# =============================================================================

def _xml_add(text: str, entries: Sequence[str]) -> Tuple[str, List[str]]:
    existing = [m.group(1) for m in _COMPILE_ITEM.finditer(text)]
    to_add: List[str] = []
    for entry in entries:
        if any(_same_entry(entry, e) for e in existing + to_add):
            continue
        to_add.append(entry)
    if not to_add:
        return text, []

    nl = _newline(text)
    items = list(_COMPILE_ITEM.finditer(text))
    if items:
        last = items[-1]
        line_start, line_end = _line_bounds(text, last.start(), last.end())
        indent = re.match(r"[ \t]*", text[line_start:]).group(0)
        block = "".join(f'{indent}<Compile Include="{e}" />{nl}' for e in to_add)
        if line_end == len(text) and not text.endswith("\n"):
            block = nl + block
        return text[:line_end] + block + text[line_end:], to_add

    close = None
    for close in _PROJECT_CLOSE.finditer(text):
        pass
    if close is None:
        raise ValueError("Manifest has no closing </Project> element")
    indent = close.group(1) + "  "
    block = (
        f"{indent}<ItemGroup>{nl}"
        + "".join(f'{indent}  <Compile Include="{e}" />{nl}' for e in to_add)
        + f"{indent}</ItemGroup>{nl}"
    )
    return text[:close.start()] + block + text[close.start():], to_add


def _xml_remove(text: str, entries: Sequence[str]) -> Tuple[str, List[str]]:
    removed: List[str] = []
    for entry in entries:
        match = next(
            (m for m in _COMPILE_ITEM.finditer(text) if _same_entry(m.group(1), entry)),
            None,
        )
        if match is None:
            continue
        start, end = _line_bounds(text, match.start(), match.end())
        text = text[:start] + text[end:]
        removed.append(entry)

        # Drop the surrounding ItemGroup if this was its only item
        before = text[:start]
        after = text[start:]
        open_tag = re.search(r"^[ \t]*<ItemGroup\s*>[ \t]*\r?\n\Z", before, re.MULTILINE)
        close_tag = re.match(r"[ \t]*</ItemGroup\s*>[ \t]*(?:\r?\n|\Z)", after)
        if open_tag and close_tag:
            text = before[:open_tag.start()] + after[close_tag.end():]
    return text, removed


# =============================================================================
# Line-list manifests
# =============================================================================

def _list_entries(text: str) -> List[str]:
    entries = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            entries.append(line)
    return entries


def _list_add(text: str, entries: Sequence[str]) -> Tuple[str, List[str]]:
    existing = _list_entries(text)
    to_add: List[str] = []
    for entry in entries:
        if any(_same_entry(entry, e) for e in existing + to_add):
            continue
        to_add.append(entry)
    if not to_add:
        return text, []
    nl = _newline(text)
    if text and not text.endswith("\n"):
        text += nl
    return text + "".join(e + nl for e in to_add), to_add


def _list_remove(text: str, entries: Sequence[str]) -> Tuple[str, List[str]]:
    lines = text.splitlines(keepends=True)
    removed: List[str] = []
    for entry in entries:
        for i, line in enumerate(lines):
            if _same_entry(line.split("#", 1)[0], entry):
                del lines[i]
                removed.append(entry)
                break
    return "".join(lines), removed


# =============================================================================
# Public API
# =============================================================================

def _read(path: str) -> str:
    # newline="" keeps \r\n intact
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _write(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


def update_manifest(
    module_name: str,
    manifest_path: str,
    target_paths: Sequence[str],
) -> ManifestUpdateResult:
    """Register newly created files with a module manifest.

    Errors (missing manifest, unreadable file) are recorded on the
    result rather than raised.
    """
    result = ManifestUpdateResult(module_name=module_name, manifest_path=manifest_path)

    if not os.path.isfile(manifest_path):
        result.error = "Manifest file not found"
        logger.error(f"[deploy] Manifest not found for {module_name}: {manifest_path}")
        return result

    try:
        text = _read(manifest_path)
        entries = [manifest_entry(manifest_path, p) for p in target_paths]

        if is_xml_manifest(manifest_path):
            if is_sdk_style(text):
                result.success = True
                result.message = "SDK-style project - files auto-included"
                return result
            new_text, added = _xml_add(text, entries)
        else:
            new_text, added = _list_add(text, entries)

        if added:
            _write(manifest_path, new_text)
            for entry in added:
                logger.info(f"[deploy] Added to {os.path.basename(manifest_path)}: {entry}")
        result.added_entries = added
        result.message = f"Added {len(added)} entr{'y' if len(added) == 1 else 'ies'}"
        result.success = True
    except (OSError, ValueError) as e:
        result.error = str(e)
        logger.error(f"[deploy] Failed to update manifest {manifest_path}: {e}")

    return result


def revert_manifest(manifest_path: str, entries: Sequence[str]) -> List[str]:
    """Remove exactly `entries` from a manifest; returns the ones removed.

    Raises OSError when the manifest cannot be read or written.
    """
    if not entries:
        return []
    text = _read(manifest_path)
    if is_xml_manifest(manifest_path):
        new_text, removed = _xml_remove(text, entries)
    else:
        new_text, removed = _list_remove(text, entries)
    if removed:
        _write(manifest_path, new_text)
    return removed
