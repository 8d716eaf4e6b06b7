# FILE: patchgate/deployment/method_merge.py
"""Method-level merge of generated code into existing files.

A modification artifact usually carries one rewritten method inside a
stand-in wrapper class. Instead of overwriting the target file, the
method body is cut out of the generated text and spliced over the same
method in the existing file. Everything outside the method span is kept
byte for byte.

Also binds generated test scaffolding (written against a placeholder
class) to the real type under test.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from patchgate.deployment.brace_scanner import find_matching_brace
from patchgate.deployment.config import DEFAULT_PLACEHOLDER_NAMESPACES

logger = logging.getLogger(__name__)

_MODIFIERS = (
    "public|private|protected|internal|static|async|override|virtual"
    "|sealed|abstract|extern|unsafe|new|partial|readonly"
)

_TYPE_KEYWORDS = "class|struct|record|interface"

# Lines that belong to the method above its signature
_DECORATION_LINE = re.compile(r"^\s*(?://|/\*|\*|\[.*\]\s*$)")

_USING_LINE = re.compile(r"^[ \t]*using[ \t]+([\w.]+)[ \t]*;[ \t]*(?:\r?\n|$)", re.MULTILINE)
_NAMESPACE_LINE = re.compile(r"^\s*namespace\b")


@dataclass
class MethodSpan:
    """A method's extent in a source text; text == source[start:end]."""
    start: int
    end: int
    text: str


# =============================================================================
# Extraction
# =============================================================================

def _method_pattern(method_name: str) -> "re.Pattern[str]":
    return re.compile(
        r"^[ \t]*(?:(?:" + _MODIFIERS + r")[ \t]+)*"
        r"[\w<>\[\],.?][\w<>\[\],.? \t]*?[ \t]+"
        + re.escape(method_name)
        + r"\s*(?:<[^>]+>)?\s*\((?:[^()]|\([^()]*\))*\)\s*(?:where[^{;]+)?\{",
        re.MULTILINE,
    )


def _type_body(text: str, type_name: Optional[str]) -> Tuple[int, int]:
    """(start, end) of `type_name`'s body, or the whole text when not found."""
    if not type_name:
        return 0, len(text)
    match = re.search(
        r"\b(?:" + _TYPE_KEYWORDS + r")\s+" + re.escape(type_name) + r"\b[^{;]*\{", text
    )
    if not match:
        return 0, len(text)
    close = find_matching_brace(text, match.end() - 1)
    if close is None:
        return 0, len(text)
    return match.end(), close


def _extend_over_decorations(text: str, start: int) -> int:
    """Move `start` back over attribute, comment and blank lines above it."""
    lines_start = start
    cursor = start
    while cursor > 0:
        prev_end = cursor - 1  # the '\n' ending the previous line
        prev_start = text.rfind("\n", 0, prev_end) + 1
        line = text[prev_start:prev_end]
        if line.strip() == "" or _DECORATION_LINE.match(line):
            cursor = prev_start
            if line.strip():
                lines_start = cursor
            continue
        break
    return lines_start


def extract_method(
    text: str,
    method_name: str,
    type_name: Optional[str] = None,
) -> Optional[MethodSpan]:
    """Find `method_name` in `text` and return its full span.

    The span runs from the first attribute/comment line directly above
    the signature to the closing brace. Leading blank lines are not part
    of the span. When `type_name` is given and found, only that type's
    body is searched.

    Returns:
        MethodSpan, or None when the method (or its closing brace) is
        not found.
    """
    if not text or not method_name:
        return None

    body_start, body_end = _type_body(text, type_name)
    match = _method_pattern(method_name).search(text, body_start, body_end)
    if not match:
        return None

    close = find_matching_brace(text, match.end() - 1)
    if close is None:
        return None

    start = _extend_over_decorations(text, match.start())
    end = close + 1
    return MethodSpan(start=start, end=end, text=text[start:end])


def merge_method(
    existing_text: str,
    generated_text: str,
    method_name: str,
    type_name: Optional[str] = None,
) -> Optional[str]:
    """Splice the generated version of a method over the existing one.

    Returns None when the method cannot be extracted from either side;
    the caller decides how to degrade.
    """
    old = extract_method(existing_text, method_name, type_name)
    if old is None:
        logger.debug(f"[merge] {method_name} not found in existing file")
        return None

    new = extract_method(generated_text, method_name)
    if new is None:
        logger.debug(f"[merge] {method_name} not found in generated content")
        return None

    return existing_text[:old.start] + new.text + existing_text[old.end:]


# =============================================================================
# Test binding
# =============================================================================

def _is_placeholder_namespace(namespace: str, placeholders: Sequence[str]) -> bool:
    lowered = namespace.lower()
    for ph in placeholders:
        ph = ph.lower()
        if lowered == ph or lowered.startswith(ph + "."):
            return True
    return namespace.rsplit(".", 1)[-1].startswith("Dummy")


def _rewrite_qualified_refs(
    content: str,
    placeholders: Iterable[str],
    real_type_name: Optional[str],
) -> str:
    names = sorted({p for p in placeholders if p}, key=len, reverse=True)
    if not names:
        return content
    pattern = re.compile(r"\b(?:" + "|".join(re.escape(n) for n in names) + r")\.(\w+)\b")

    def _replace(match: "re.Match[str]") -> str:
        type_name = match.group(1)
        if real_type_name and type_name.startswith("Dummy"):
            return real_type_name
        return type_name

    lines: List[str] = []
    for line in content.splitlines(keepends=True):
        lines.append(line if _NAMESPACE_LINE.match(line) else pattern.sub(_replace, line))
    return "".join(lines)


def bind_test_to_real_type(
    content: str,
    real_namespace: str,
    real_type_name: Optional[str] = None,
    placeholder_namespaces: Sequence[str] = DEFAULT_PLACEHOLDER_NAMESPACES,
) -> str:
    """Point generated test code at the real namespace and type.

    - adds `using <real_namespace>;` after the last using (or at the top)
    - drops usings of placeholder namespaces
    - rewrites `Placeholder.Type` references to `Type`; placeholder types
      (named Dummy*) become `real_type_name` when one is given
    """
    if not real_namespace:
        return content

    found = [(m, m.group(1)) for m in _USING_LINE.finditer(content)]
    placeholders = set(placeholder_namespaces)

    # Strip placeholder usings, back to front so offsets stay valid
    for match, ns in reversed(found):
        if ns != real_namespace and _is_placeholder_namespace(ns, placeholder_namespaces):
            placeholders.add(ns)
            content = content[:match.start()] + content[match.end():]

    content = _rewrite_qualified_refs(content, placeholders, real_type_name)

    remaining = list(_USING_LINE.finditer(content))
    if any(m.group(1) == real_namespace for m in remaining):
        return content

    directive = f"using {real_namespace};"
    if remaining:
        last = remaining[-1]
        insert_at = last.end()
        prefix = "" if content[insert_at - 1:insert_at] == "\n" else "\n"
        return content[:insert_at] + prefix + directive + "\n" + content[insert_at:]
    return directive + "\n" + content
