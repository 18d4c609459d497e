"""
Dependency tree extraction.

Obtains the declared dependency tree of a project from an external provider
tool (``pnpm ls``/``npm ls``), normalizes its encodings, flattens it to
package records and keeps the newest version of each package.
"""

import asyncio
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .cache_manager import DiscoveryCache
from .cli_config import PluginsConfig, get_config
from .dependency import PackageRecord
from .entry_resolver import EntryResolver
from .error_handling import (
    ErrorCategory,
    MalformedTreeError,
    TreeProviderError,
    get_error_handler,
    log_provider_error,
)
from .structured_logging import get_tree_logger, log_tree_extracted
from .versioning import parse_version


@dataclass
class ProviderResult:
    """Uniform outcome of a single provider invocation."""

    provider: str
    output: Optional[str] = None
    return_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def produced(self) -> bool:
        """True if the provider wrote anything to stdout, even on failure."""
        return bool(self.output and self.output.strip())


class TreeProvider:
    """An external command that prints a project's dependency tree as JSON."""

    def __init__(self, name: str, command: Sequence[str], timeout: Optional[int] = None):
        if not command or not all(isinstance(arg, str) for arg in command):
            raise ValueError(f"Invalid command for provider {name}")
        self.name = name
        self.command = list(command)
        self.timeout = timeout

    async def run(self, project_dir: Path) -> ProviderResult:
        """
        Run the provider in project_dir.

        Never raises for process failures; those are reported in the result.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(project_dir),
            )
        except OSError as e:
            return ProviderResult(self.name, error=f"Could not start: {e}")

        try:
            if self.timeout is None:
                stdout_data, stderr_data = await process.communicate()
            else:
                stdout_data, stderr_data = await asyncio.wait_for(
                    process.communicate(), timeout=self.timeout
                )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ProviderResult(
                self.name, error=f"Timed out after {self.timeout}s"
            )

        stdout = stdout_data.decode("utf-8", errors="replace") if stdout_data else ""
        stderr = stderr_data.decode("utf-8", errors="replace") if stderr_data else ""
        return ProviderResult(
            self.name,
            output=stdout,
            return_code=process.returncode,
            error=stderr.strip() or None,
        )

    def __repr__(self) -> str:
        return f"TreeProvider({self.name!r}, {self.command!r})"


def default_providers(config: Optional[PluginsConfig] = None) -> List[TreeProvider]:
    """Build the configured providers in preference order."""
    config = config or get_config()
    return [
        TreeProvider(name, command, config.providers.timeout_seconds)
        for name, command in config.providers.commands.items()
    ]


@dataclass
class TreeNode:
    """Canonical dependency tree node; children are always a list."""

    name: Optional[str] = None
    version: Optional[str] = None
    path: Optional[str] = None
    hint: Optional[str] = None
    children: List["TreeNode"] = field(default_factory=list)


def parse_tree_output(output: str) -> List[Dict[str, Any]]:
    """
    Parse provider output into a list of raw root nodes.

    The output is either one JSON document or a line stream in which exactly
    one line is the document; the first parsable line wins.

    Raises:
        MalformedTreeError: If no JSON object or array can be found
    """
    document: Any = None
    try:
        document = json.loads(output)
    except ValueError:
        for line in output.splitlines():
            line = line.strip()
            if not line or line[0] not in "{[":
                continue
            try:
                document = json.loads(line)
                break
            except ValueError:
                continue

    if isinstance(document, dict):
        return [document]
    if isinstance(document, list):
        roots = [node for node in document if isinstance(node, dict)]
        if roots or not document:
            return roots

    raise MalformedTreeError("Dependency tree output contains no JSON document")


def _location_hint(raw: Dict[str, Any]) -> Optional[str]:
    realpath = raw.get("realpath")
    if isinstance(realpath, str) and realpath:
        return realpath
    resolved = raw.get("resolved")
    if isinstance(resolved, str) and resolved.startswith("file:"):
        return resolved[len("file:"):]
    return None


def normalize_tree(
    raw: Any,
    dependency_keys: Iterable[str] = ("dependencies",),
    fallback_name: Optional[str] = None,
    _ancestors: Optional[set] = None,
) -> TreeNode:
    """
    Convert a raw provider node into a TreeNode.

    Children given as a list or as a name-keyed mapping both become a list;
    mapping keys fill in missing names. Objects that contain themselves are
    cut at the repeat so normalization terminates on in-memory cycles.
    """
    ancestors = _ancestors if _ancestors is not None else set()
    if not isinstance(raw, dict):
        return TreeNode(name=fallback_name)

    name = raw.get("name") if isinstance(raw.get("name"), str) else None
    version = raw.get("version")
    path = raw.get("path")

    node = TreeNode(
        name=name or fallback_name,
        version=str(version) if version not in (None, "") else None,
        path=path if isinstance(path, str) and path else None,
        hint=_location_hint(raw),
    )

    ancestors.add(id(raw))
    try:
        for key in dependency_keys:
            children = raw.get(key)
            if isinstance(children, dict):
                items = list(children.items())
            elif isinstance(children, list):
                items = [(None, child) for child in children]
            else:
                continue

            for child_name, child in items:
                if isinstance(child, dict) and id(child) in ancestors:
                    continue
                if isinstance(child, str):
                    # Some providers list a bare version string per name
                    child = {"version": child}
                node.children.append(
                    normalize_tree(child, dependency_keys, child_name, ancestors)
                )
    finally:
        ancestors.discard(id(raw))

    return node


def flatten_tree(
    roots: Iterable[TreeNode],
    project_dir: Path,
    store_dir_name: str = "node_modules",
) -> List[PackageRecord]:
    """
    Flatten trees into package records in depth-first pre-order.

    Every occurrence with a distinct ``name@version:path`` key is kept, so a
    package installed at several versions yields several records; use
    select_latest() to pick one per name. A repeated key drops that node and
    its subtree, which is also what terminates cyclic trees.
    """
    project_root = project_dir.resolve()
    records: List[PackageRecord] = []
    visited = set()

    root_nodes = list(roots)
    # A root without any location (npm ls without --long) is the project
    projects = {id(node) for node in root_nodes if not (node.path or node.hint)}

    stack: List[TreeNode] = list(reversed(root_nodes))
    while stack:
        node = stack.pop()

        if node.name and node.version and id(node) not in projects:
            path = _infer_path(node, project_root, store_dir_name)
            if path != project_root:
                record = PackageRecord(node.name, node.version, path)
                if record.key in visited:
                    continue
                visited.add(record.key)
                records.append(record)

        stack.extend(reversed(node.children))

    return records


def _infer_path(node: TreeNode, project_root: Path, store_dir_name: str) -> Path:
    location = node.path or node.hint
    if location:
        path = Path(location)
        if not path.is_absolute():
            path = project_root / path
        return Path(os.path.normpath(path))
    return project_root / store_dir_name / node.name


def select_latest(records: Iterable[PackageRecord]) -> List[PackageRecord]:
    """
    Keep one record per name: the newest valid version wins.

    Without any valid version the most deeply nested path wins. Remaining
    ties go to the record seen first. Output keeps first-seen name order.
    """
    groups: Dict[str, List[PackageRecord]] = {}
    for record in records:
        groups.setdefault(record.name, []).append(record)

    selected = []
    for candidates in groups.values():
        if len(candidates) == 1:
            selected.append(candidates[0])
            continue

        versioned = [
            (parse_version(record.version), record) for record in candidates
        ]
        valid = [(version, record) for version, record in versioned if version]
        if valid:
            best_version, best = valid[0]
            for version, record in valid[1:]:
                if version.sort_key() > best_version.sort_key():
                    best_version, best = version, record
        else:
            best = candidates[0]
            for record in candidates[1:]:
                if record.depth > best.depth:
                    best = record
        selected.append(best)

    return selected


class TreeExtractor:
    """Extracts deduplicated package records from a provider's dependency tree."""

    def __init__(
        self,
        providers: Optional[List[TreeProvider]] = None,
        config: Optional[PluginsConfig] = None,
        entry_resolver: Optional[EntryResolver] = None,
    ):
        self.config = config or get_config()
        self.providers = providers if providers is not None else default_providers(self.config)
        self.entry_resolver = entry_resolver or EntryResolver(self.config)
        self.logger = get_tree_logger()
        self._cache = DiscoveryCache("dependencies", self.config.performance)

    async def acquire(self, project_dir: Path) -> ProviderResult:
        """
        Run providers in order and return the first that produced output.

        Raises:
            TreeProviderError: If no provider produced any output
        """
        failures = []
        for provider in self.providers:
            result = await provider.run(project_dir)
            if result.produced:
                if result.return_code:
                    self.logger.warning(
                        "provider_nonzero_exit_salvaged",
                        provider=provider.name,
                        return_code=result.return_code,
                    )
                return result

            log_provider_error(
                f"Provider produced no output: {result.error or 'empty stdout'}",
                "tree_extractor",
                "acquire",
                provider=provider.name,
                return_code=result.return_code,
            )
            failures.append(f"{provider.name}: {result.error or 'no output'}")

        raise TreeProviderError(
            "No dependency tree provider produced output"
            + (f" ({'; '.join(failures)})" if failures else "")
        )

    async def extract(
        self,
        project_dir: Union[str, Path],
        with_entries: bool = False,
        refresh: bool = False,
    ) -> List[PackageRecord]:
        """
        Extract the project's installed dependencies, newest version per name.

        Args:
            project_dir: Project directory the provider runs in
            with_entries: Whether to resolve each record's entry file
            refresh: Ignore cached results for this project

        Raises:
            TreeProviderError: If every provider failed to produce output
            MalformedTreeError: If the output contains no dependency tree
        """
        project_dir = Path(project_dir).resolve()
        cache_key = (project_dir, with_entries)

        if not refresh:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return list(cached)

        start_time = asyncio.get_running_loop().time()
        result = await self.acquire(project_dir)

        try:
            raw_roots = parse_tree_output(result.output or "")
        except MalformedTreeError:
            get_error_handler().error(
                ErrorCategory.PARSING,
                "Unparsable dependency tree output",
                "tree_extractor",
                "extract",
                details={"provider": result.provider},
            )
            raise

        records = self.records_from_tree(raw_roots, project_dir)
        latest = select_latest(records)

        if with_entries:
            latest = [
                record.with_entry(self.entry_resolver.try_resolve_entry(record.path))
                for record in latest
            ]

        duration_ms = int((asyncio.get_running_loop().time() - start_time) * 1000)
        log_tree_extracted(
            str(project_dir), result.provider, len(records), len(latest), duration_ms
        )

        self._cache.put(cache_key, list(latest))
        return latest

    def records_from_tree(
        self, raw_roots: Iterable[Any], project_dir: Path
    ) -> List[PackageRecord]:
        """Normalize and flatten raw root nodes, keeping every occurrence."""
        keys = self.config.providers.dependency_keys
        roots = [normalize_tree(raw, keys) for raw in raw_roots]
        return flatten_tree(roots, project_dir, self.config.store.store_dir_name)


async def extract(
    project_dir: Union[str, Path], with_entries: bool = False
) -> List[PackageRecord]:
    """Extract dependencies with a one-off extractor."""
    return await TreeExtractor().extract(project_dir, with_entries=with_entries)
