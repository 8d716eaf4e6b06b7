# FILE: patchgate/deployment/path_resolver.py
"""Target path resolution for generated artifacts.

The path a generator attaches to an artifact is only a hint. The
authoritative location comes from the namespace the artifact declares,
looked up against the analysed module graph in four tiers:

1. exact       namespace is a known namespace of some module
2. prefix      longest known dot-prefix, remainder becomes sub-folders
3. path_token  a segment of the generator path names a module
4. unresolved  generator path joined onto the codebase root (warning)

Resolution never touches the filesystem.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from patchgate.deployment.config import DEFAULT_TEST_NAMESPACE_PREFIXES
from patchgate.deployment.namespace_map import declared_namespace, namespace_suffix
from patchgate.deployment.schemas import (
    GeneratedArtifact,
    ModuleDescriptor,
    ModuleGraph,
    ResolutionConfidence,
    ResolvedMapping,
)

logger = logging.getLogger(__name__)


def _join_folder(*parts: str) -> str:
    """Join posix folder fragments, dropping empty ones."""
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def is_within(root: str, path: str) -> bool:
    """True when `path` is `root` or lies underneath it."""
    root = os.path.abspath(root)
    path = os.path.abspath(path)
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        # Different drives on Windows
        return False


# =============================================================================
# Namespace index
# =============================================================================

class NamespaceIndex:
    """Case-insensitive namespace -> (module, folder) table.

    Folders are relative to the codebase root, forward-slash separated.
    Built once per module graph and only read afterwards. When two
    modules claim the same namespace the first registration wins.
    """

    def __init__(self, graph: ModuleGraph):
        self._entries: Dict[str, Tuple[ModuleDescriptor, str]] = {}

        for module in graph.modules:
            module_dir = module.directory
            root = module.root_namespace

            if root and module.namespace_folder_map:
                for suffix, folder in module.namespace_folder_map.items():
                    full_ns = f"{root}.{suffix}" if suffix else root
                    self._register(full_ns, module, _join_folder(module_dir, folder))

            for ns in module.namespaces:
                suffix = namespace_suffix(ns, root)
                folder = module.namespace_folder_map.get(suffix)
                if folder is None:
                    folder = suffix.replace(".", "/")
                self._register(ns, module, _join_folder(module_dir, folder))

            if root:
                self._register(root, module, module_dir)

        logger.debug(f"[resolver] Built namespace index with {len(self._entries)} entries")

    def _register(self, namespace: str, module: ModuleDescriptor, folder: str) -> None:
        if not namespace:
            return
        self._entries.setdefault(namespace.lower(), (module, folder))

    def lookup(self, namespace: str) -> Optional[Tuple[ModuleDescriptor, str]]:
        return self._entries.get((namespace or "").lower())

    def __contains__(self, namespace: str) -> bool:
        return (namespace or "").lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Resolver
# =============================================================================

class PathResolver:
    """Maps each GeneratedArtifact to exactly one ResolvedMapping."""

    def __init__(
        self,
        graph: ModuleGraph,
        index: Optional[NamespaceIndex] = None,
        test_namespace_prefixes: Sequence[str] = DEFAULT_TEST_NAMESPACE_PREFIXES,
    ):
        self.graph = graph
        self.index = index or NamespaceIndex(graph)
        self.test_namespace_prefixes = tuple(test_namespace_prefixes)

    def resolve_all(self, artifacts: Iterable[GeneratedArtifact]) -> List[ResolvedMapping]:
        return [self.resolve_artifact(a) for a in artifacts]

    def resolve_artifact(self, artifact: GeneratedArtifact) -> ResolvedMapping:
        namespace = declared_namespace(artifact.content)
        file_name = artifact.file_name

        if namespace:
            hit = self.index.lookup(namespace)
            if hit:
                module, folder = hit
                return self._mapping(
                    artifact, module, folder, file_name, ResolutionConfidence.EXACT, namespace
                )

            hit = self._prefix_match(namespace)
            if hit:
                module, folder = hit
                return self._mapping(
                    artifact, module, folder, file_name, ResolutionConfidence.PREFIX, namespace
                )
        else:
            logger.warning(f"[resolver] No namespace declared in {artifact.relative_path}")

        token_module = self._path_token_module(artifact.relative_path)
        if token_module is not None:
            folder = _join_folder(token_module.directory, self._folder_in_module(token_module, namespace))
            return self._mapping(
                artifact, token_module, folder, file_name, ResolutionConfidence.PATH_TOKEN, namespace
            )

        return self._fallback(artifact, namespace)

    # -------------------------------------------------------------------------
    # Tiers
    # -------------------------------------------------------------------------

    def _prefix_match(self, namespace: str) -> Optional[Tuple[ModuleDescriptor, str]]:
        parts = namespace.split(".")
        for length in range(len(parts) - 1, 0, -1):
            prefix = ".".join(parts[:length])
            hit = self.index.lookup(prefix)
            if hit:
                module, folder = hit
                extra = "/".join(parts[length:])
                return module, _join_folder(folder, extra)
        return None

    def _path_token_module(self, relative_path: str) -> Optional[ModuleDescriptor]:
        segments = [s for s in relative_path.replace("\\", "/").split("/") if s]
        # Last segment is the file name
        for segment in segments[:-1]:
            module = self.graph.get(segment)
            if module is not None:
                return module
        return None

    def _strip_test_prefix(self, value: str) -> Optional[str]:
        for prefix in self.test_namespace_prefixes:
            head = prefix + "."
            if value.lower().startswith(head.lower()):
                return value[len(head):]
        return None

    def _folder_in_module(self, module: ModuleDescriptor, namespace: Optional[str]) -> str:
        """Folder (relative to the module) for `namespace` inside a path-token module."""
        if not namespace:
            return ""

        folder_map = {k.lower(): v for k, v in module.namespace_folder_map.items()}

        relative: List[str] = []
        for base in (module.root_namespace, module.name):
            if not base:
                continue
            suffix = namespace_suffix(namespace, base)
            if suffix != namespace:
                relative.append(suffix)

        candidates: List[str] = []
        for value in [namespace] + relative:
            candidates.append(value)
            stripped = self._strip_test_prefix(value)
            if stripped is not None:
                candidates.append(stripped)

        for candidate in candidates:
            folder = folder_map.get(candidate.lower())
            if folder is not None and candidate:
                return folder

        for value in relative:
            remaining = self._strip_test_prefix(value) or value
            if remaining and "." not in remaining:
                return remaining
        return ""

    def _fallback(self, artifact: GeneratedArtifact, namespace: Optional[str]) -> ResolvedMapping:
        segments = artifact.relative_path.replace("\\", "/").split("/")
        # "." and ".." are dropped so the target stays under the codebase root
        parts = [p for p in segments if p and p not in (".", "..")]
        start = 1 if len(parts) > 2 and "." not in parts[0] else 0
        target = os.path.normpath(os.path.join(self.graph.codebase_path, *parts[start:]))
        logger.warning(
            f"[resolver] No mapping for namespace '{namespace}', using fallback: {target}"
        )
        return ResolvedMapping(
            artifact=artifact,
            target_path=target,
            module_name=None,
            confidence=ResolutionConfidence.UNRESOLVED,
            namespace=namespace,
        )

    def _mapping(
        self,
        artifact: GeneratedArtifact,
        module: ModuleDescriptor,
        folder: str,
        file_name: str,
        confidence: ResolutionConfidence,
        namespace: Optional[str],
    ) -> ResolvedMapping:
        folder_parts = [p for p in folder.split("/") if p]
        target = os.path.normpath(os.path.join(self.graph.codebase_path, *folder_parts, file_name))
        logger.info(
            f"[resolver] Mapped ({confidence.value}): {artifact.relative_path} -> {target} "
            f"(module: {module.name}, ns: {namespace})"
        )
        return ResolvedMapping(
            artifact=artifact,
            target_path=target,
            module_name=module.name,
            confidence=confidence,
            namespace=namespace,
        )


def resolve_all(
    graph: ModuleGraph,
    artifacts: Iterable[GeneratedArtifact],
    test_namespace_prefixes: Sequence[str] = DEFAULT_TEST_NAMESPACE_PREFIXES,
) -> List[ResolvedMapping]:
    """Resolve every artifact against a freshly built index."""
    return PathResolver(graph, test_namespace_prefixes=test_namespace_prefixes).resolve_all(artifacts)
