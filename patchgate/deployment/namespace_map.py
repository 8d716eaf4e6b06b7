# FILE: patchgate/deployment/namespace_map.py
"""Namespace-to-location mapping for one module.

Given (namespace, relative folder) observations gathered from a module's
source files, work out the module's root namespace and a table of
namespace suffix -> folder. The table always maps "" to the module root.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from patchgate.deployment.schemas import ModuleDescriptor

logger = logging.getLogger(__name__)

# First block- or file-scoped namespace declaration in a source file
NAMESPACE_PATTERN = re.compile(r"^\s*namespace\s+([\w.]+)", re.MULTILINE)

# Build output folders never contribute observations
_IGNORED_FOLDERS = {"bin", "obj"}

Observation = Tuple[str, str]


def declared_namespace(content: str) -> Optional[str]:
    """Return the first namespace declared in `content`, if any."""
    match = NAMESPACE_PATTERN.search(content or "")
    return match.group(1) if match else None


def namespace_suffix(namespace: str, root_namespace: str) -> str:
    """Suffix of `namespace` relative to `root_namespace`.

    Empty when they are equal, the tail after "root." when the namespace
    sits under the root, otherwise the full namespace.
    """
    if namespace.lower() == (root_namespace or "").lower():
        return ""
    if root_namespace and namespace.lower().startswith(root_namespace.lower() + "."):
        return namespace[len(root_namespace) + 1:]
    return namespace


def common_namespace_prefix(namespaces: Sequence[str]) -> str:
    """Longest common dot-separated prefix, compared case-insensitively.

    The shortest namespace is the reference, so the result keeps its casing.
    """
    distinct = sorted(dict.fromkeys(n for n in namespaces if n), key=len)
    if not distinct:
        return ""
    if len(distinct) == 1:
        return distinct[0]

    reference = distinct[0].split(".")
    prefix_len = len(reference)
    for ns in distinct[1:]:
        parts = ns.split(".")
        common = 0
        for i in range(min(prefix_len, len(parts))):
            if reference[i].lower() != parts[i].lower():
                break
            common += 1
        prefix_len = common
        if prefix_len == 0:
            break
    return ".".join(reference[:prefix_len])


def _normalize_folder(folder: str) -> str:
    folder = (folder or "").replace("\\", "/").strip("/")
    return "" if folder == "." else folder


def build_namespace_folder_map(
    observations: Iterable[Observation],
    root_namespace: str = "",
) -> Tuple[str, Dict[str, str]]:
    """Compute (root namespace, suffix -> folder map) for one module.

    Args:
        observations: (namespace, folder relative to the module) pairs, in
            discovery order
        root_namespace: root namespace already known for the module, if any

    Returns:
        The chosen root namespace and the folder map. The map always
        contains "" -> "".
    """
    pairs = [(ns, _normalize_folder(folder)) for ns, folder in observations if ns]
    folder_map: Dict[str, str] = {}

    if pairs:
        root_folder_namespaces = [ns for ns, folder in pairs if folder == ""]
        if root_folder_namespaces:
            root_namespace = Counter(root_folder_namespaces).most_common(1)[0][0]
        elif not root_namespace:
            root_namespace = common_namespace_prefix([ns for ns, _ in pairs])

        for ns, folder in dict.fromkeys(pairs):
            suffix = namespace_suffix(ns, root_namespace)
            # First folder seen for a suffix wins
            if suffix:
                folder_map.setdefault(suffix, folder)

    folder_map[""] = ""
    return root_namespace, folder_map


def observations_from_sources(
    sources: Iterable[Tuple[str, str]],
) -> List[Observation]:
    """Derive observations from (path relative to module, source text) pairs.

    Files without a namespace declaration, and files under bin/ or obj/,
    are skipped.
    """
    observations: List[Observation] = []
    for rel_path, text in sources:
        rel_path = rel_path.replace("\\", "/")
        folder = posixpath.dirname(rel_path)
        if any(part.lower() in _IGNORED_FOLDERS for part in folder.split("/") if part):
            continue
        ns = declared_namespace(text)
        if ns:
            observations.append((ns, folder))
    return observations


def build_module_descriptor(
    module: ModuleDescriptor,
    observations: Iterable[Observation],
) -> ModuleDescriptor:
    """Return a copy of `module` with its root namespace and folder map filled in."""
    observations = list(observations)
    root, folder_map = build_namespace_folder_map(observations, module.root_namespace)

    namespaces = list(module.namespaces)
    seen = {n.lower() for n in namespaces}
    for ns, _ in observations:
        if ns and ns.lower() not in seen:
            seen.add(ns.lower())
            namespaces.append(ns)

    logger.debug(
        f"[mapper] {module.name}: root={root!r}, {len(folder_map)} namespace folder(s)"
    )
    return ModuleDescriptor(
        name=module.name,
        manifest_path=module.manifest_path,
        root_namespace=root,
        namespaces=namespaces,
        dependencies=list(module.dependencies),
        namespace_folder_map=folder_map,
        is_test_module=module.is_test_module,
    )
