"""
Package entry file resolution.

Determines the file a package designates as its loadable implementation from
its ``package.json`` manifest, falling back to conventional entry names.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .cache_manager import DiscoveryCache
from .cli_config import PluginsConfig, get_config
from .error_handling import EntryNotFoundError, ErrorCategory, get_error_handler


def read_manifest(package_dir: Path, manifest_name: str = "package.json") -> Dict[str, Any]:
    """
    Read a package manifest.

    A missing manifest is an empty manifest. A malformed one is logged and
    also treated as empty, so resolution can still fall back to conventions.
    """
    manifest_path = package_dir / manifest_name
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (ValueError, UnicodeDecodeError) as e:
        get_error_handler().warning(
            ErrorCategory.PARSING,
            "Malformed package manifest",
            "entry_resolver",
            "read_manifest",
            exception=e,
            details={"manifest": str(manifest_path)},
        )
        return {}

    if not isinstance(data, dict):
        return {}
    return data


def _is_readable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


class EntryResolver:
    """Resolves and caches package entry files."""

    def __init__(self, config: Optional[PluginsConfig] = None):
        self.config = config or get_config()
        self._cache = DiscoveryCache("entries", self.config.performance)

    def resolve_entry(self, package_dir: Union[str, Path]) -> Path:
        """
        Resolve the canonical entry file of a package.

        Args:
            package_dir: Package directory

        Returns:
            Path to a readable entry file

        Raises:
            EntryNotFoundError: If neither the manifest nor any conventional
                entry name resolves to a readable file
        """
        package_dir = Path(os.path.realpath(package_dir))
        cached = self._cache.get(package_dir)
        if cached is not None:
            return cached

        entry = self._resolve(package_dir)
        self._cache.put(package_dir, entry)
        return entry

    def _resolve(self, package_dir: Path) -> Path:
        entry_config = self.config.entry
        manifest = read_manifest(package_dir, self.config.store.manifest_name)

        declared = manifest.get("module") or manifest.get("main")
        if not isinstance(declared, str) or not declared.strip():
            declared = entry_config.index_file

        candidate = package_dir / declared
        looks_like_dir = declared.endswith(("/", "\\")) or candidate.is_dir()

        if looks_like_dir:
            candidate = candidate / entry_config.index_file
        elif not candidate.suffix:
            with_extension = candidate.with_name(
                candidate.name + entry_config.source_extension
            )
            if with_extension.is_file():
                candidate = with_extension
            else:
                candidate = candidate / entry_config.index_file

        if _is_readable(candidate):
            return candidate

        for name in entry_config.conventional_entries:
            fallback = package_dir / name
            if _is_readable(fallback):
                return fallback

        raise EntryNotFoundError(f"No entry file found for package: {package_dir}")

    def try_resolve_entry(self, package_dir: Union[str, Path]) -> Optional[Path]:
        """resolve_entry() that returns None instead of raising."""
        try:
            return self.resolve_entry(package_dir)
        except EntryNotFoundError:
            return None

    def get_cache_stats(self) -> Dict[str, Any]:
        return self._cache.get_stats()


def resolve_entry(package_dir: Union[str, Path]) -> Path:
    """Resolve a package entry file with a one-off resolver."""
    return EntryResolver().resolve_entry(package_dir)
