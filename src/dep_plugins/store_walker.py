"""
Module store enumeration.

Walks a ``node_modules``-style module store and returns the canonical
(symlink-resolved) directory of every installed package. Both store layouts
are supported:

* flat: packages live at the top level or inside another package's own
  nested store (``<pkg>/node_modules``);
* content-addressed: real directories live under a side-index
  (``.pnpm/<name>@<version>/node_modules/<name>``) and top-level entries are
  links into it.

The side-index is handled as just another nested store. Recursion passes
every path found so far as the exclude set, so each nested store is only
entered for newly discovered packages and the walk terminates even when links
point back up the tree.
"""

import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .cli_config import StoreConfig, get_config
from .error_handling import log_filesystem_warning
from .structured_logging import get_discovery_logger, log_store_enumerated

PathLike = Union[str, "os.PathLike[str]"]


def _real(path: Path) -> Path:
    return Path(os.path.realpath(path))


class StoreWalker:
    """Enumerates canonical package directories across store layout variants."""

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or get_config().store
        self.logger = get_discovery_logger()

    def enumerate(
        self, store_root: PathLike, exclude: Optional[Iterable[PathLike]] = None
    ) -> Set[Path]:
        """
        Enumerate every package directory under store_root.

        Args:
            store_root: Root of the module store
            exclude: Canonical paths to leave out of the result

        Returns:
            Set of canonical package directories; empty if the root is absent
        """
        return set(self.walk(store_root, exclude))

    def walk(
        self, store_root: PathLike, exclude: Optional[Iterable[PathLike]] = None
    ) -> List[Path]:
        """Like enumerate(), but returns paths in discovery order."""
        root = Path(store_root)
        excluded = {_real(Path(p)) for p in (exclude or ())}

        if not root.is_dir():
            log_filesystem_warning(
                "Module store not found",
                "store_walker",
                "walk",
                path=root,
            )
            return []

        stats = {"max_depth": 0}
        found = self._walk(root, excluded, depth=0, stats=stats)

        # Recursion can expose links that were not resolved yet
        canonical: Dict[Path, None] = {}
        for path in found:
            canonical[_real(path)] = None

        log_store_enumerated(str(root), len(canonical), stats["max_depth"])
        return list(canonical)

    def _walk(
        self, root: Path, exclude: Set[Path], depth: int, stats: Dict[str, int]
    ) -> Dict[Path, None]:
        stats["max_depth"] = max(stats["max_depth"], depth)

        try:
            names = sorted(os.listdir(root))
        except FileNotFoundError:
            self.logger.debug("store_vanished", store_root=str(root))
            return {}

        real_root = _real(root)
        found: Dict[Path, None] = {}
        for candidate in self._candidates(root, names):
            real = _real(candidate)
            if real in exclude or real in found:
                continue
            if not real.is_dir():
                continue
            found[real] = None

        nested_stores = self._nested_stores(root, real_root, found)

        known = set(exclude)
        known.update(found)
        for store in nested_stores:
            for path in self._walk(store, known, depth + 1, stats):
                if path not in found:
                    found[path] = None
                    known.add(path)

        return found

    def _candidates(self, root: Path, names: List[str]) -> List[Path]:
        """Split entries into plain packages and expanded group members."""
        plain: List[Path] = []
        grouped: List[Path] = []

        for name in names:
            if name.startswith("."):
                continue
            entry = root / name
            if name.startswith(self.config.group_prefix):
                if entry.is_dir():
                    grouped.extend(entry / child for child in sorted(os.listdir(entry)))
            else:
                plain.append(entry)

        return plain + grouped

    def _nested_stores(
        self, root: Path, real_root: Path, found: Dict[Path, None]
    ) -> List[Path]:
        store_name = self.config.store_dir_name
        stores: Dict[Path, None] = {}

        def add(store: Path) -> None:
            if store.is_dir() and _real(store) != real_root:
                stores[_real(store)] = None

        for real in found:
            parent = real.parent
            if parent.name.startswith(self.config.group_prefix):
                parent = parent.parent
            add(parent)
            add(real / store_name)

        side_index = root / self.config.side_index_dir
        if side_index.is_dir():
            add(side_index / store_name)
            for name in sorted(os.listdir(side_index)):
                add(side_index / name / store_name)

        return list(stores)


def enumerate_packages(
    store_root: PathLike,
    exclude: Optional[Iterable[PathLike]] = None,
    config: Optional[StoreConfig] = None,
) -> Set[Path]:
    """Convenience wrapper around StoreWalker.enumerate()."""
    return StoreWalker(config).enumerate(store_root, exclude)
