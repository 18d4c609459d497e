"""
Dynamic plugin module loading.

Loads a plugin module from an identifier (module name, package name in the
project's store, filesystem path or ``file://`` URL) through a staged
fallback strategy. Loading never raises: a failing plugin is logged with the
identifier it was requested by and reported as None, so one broken package
cannot abort discovery of the others.
"""

import hashlib
import importlib
import importlib.machinery
import importlib.util
import os
import re
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

from .cache_manager import DiscoveryCache
from .cli_config import PluginsConfig, get_config
from .entry_resolver import read_manifest
from .error_handling import PluginLoadError, log_filesystem_warning, log_plugin_error
from .structured_logging import get_loader_logger, log_plugin_loaded

MODULE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
URL_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")

# Prefix for modules loaded from files, kept apart from importable names
LOADED_MODULE_PREFIX = "dep_plugins_loaded"


class PluginLoader:
    """Loads plugin modules for one project."""

    def __init__(
        self,
        project_dir: Union[str, Path, None] = None,
        config: Optional[PluginsConfig] = None,
    ):
        self.config = config or get_config()
        self.project_dir = Path(project_dir or Path.cwd()).resolve()
        self.store_root = self.project_dir / self.config.store.store_dir_name
        self.logger = get_loader_logger()
        self._modules = DiscoveryCache("modules", self.config.performance)

    def load(self, identifier: Union[str, Path]) -> Optional[ModuleType]:
        """
        Load a plugin module.

        Args:
            identifier: Dotted module name, package name, path or file:// URL

        Returns:
            The loaded module, or None if it could not be found or loaded
        """
        identifier = str(identifier)
        try:
            module = self._load_direct(identifier)
            if module is not None:
                return module

            candidate = self._locate(identifier)
            if candidate is None:
                log_filesystem_warning(
                    f"Plugin not found: {identifier}",
                    "plugin_loader",
                    "load",
                    path=self.store_root / identifier,
                )
                return None

            entry = self._entry_for(candidate)
            if entry is None:
                log_filesystem_warning(
                    f"No loadable entry for plugin: {identifier}",
                    "plugin_loader",
                    "load",
                    path=candidate,
                )
                return None

            return self._load_file(entry, identifier, stage="package")

        except (Exception, SystemExit) as e:
            # sys.exit() during plugin import is a load failure;
            # KeyboardInterrupt still propagates
            log_plugin_error(
                f"Failed to load plugin {identifier}: {e}",
                "plugin_loader",
                "load",
                identifier=identifier,
                exception=e,
            )
            return None

    def _load_direct(self, identifier: str) -> Optional[ModuleType]:
        """Stage 1: absolute file, file:// URL or importable module name."""
        if URL_SCHEME_PATTERN.match(identifier):
            parsed = urlparse(identifier)
            if parsed.scheme != "file":
                self.logger.debug(
                    "unsupported_url_scheme", identifier=identifier, scheme=parsed.scheme
                )
                return None
            path = Path(url2pathname(parsed.path))
            if self._is_loadable_file(path):
                return self._load_file(path, identifier, stage="direct")
            return None

        path = Path(identifier)
        if path.is_absolute():
            if self._is_loadable_file(path):
                return self._load_file(path, identifier, stage="direct")
            return None

        if MODULE_NAME_PATTERN.match(identifier):
            try:
                module = importlib.import_module(identifier)
            except ModuleNotFoundError as e:
                # Only a missing top-level target falls through; a missing
                # dependency of an existing module is a real load failure
                if e.name and identifier.split(".")[0] != e.name.split(".")[0]:
                    raise PluginLoadError(
                        f"{identifier} imports missing module {e.name}"
                    ) from e
                return None
            log_plugin_loaded(identifier, str(getattr(module, "__file__", "")), "direct")
            return module

        return None

    def _locate(self, identifier: str) -> Optional[Path]:
        """Stage 2: package in the project's store, else a plain path."""
        in_store = self.store_root / identifier
        if in_store.exists():
            return in_store

        path = Path(identifier)
        if not path.is_absolute():
            path = self.project_dir / path
        if path.exists():
            return path

        return None

    def _entry_for(self, candidate: Path) -> Optional[Path]:
        """Stage 3: manifest main resolved through the index fallback chain."""
        if candidate.is_file():
            return candidate if self._is_loadable_file(candidate) else None

        manifest = read_manifest(candidate, self.config.store.manifest_name)
        main = manifest.get("main")
        if not isinstance(main, str) or not main.strip():
            main = self.config.entry.index_name

        for path in self._loadable_candidates(candidate / main):
            if path.is_file():
                return path
        return None

    def _loadable_candidates(self, target: Path) -> List[Path]:
        extensions = self.config.entry.loadable_extensions
        index_name = self.config.entry.index_name

        candidates = []
        if target.suffix in extensions:
            candidates.append(target)
        candidates.extend(target.with_name(target.name + ext) for ext in extensions)
        candidates.extend(target / f"{index_name}{ext}" for ext in extensions)
        return candidates

    def _is_loadable_file(self, path: Path) -> bool:
        return path.is_file() and path.suffix in self.config.entry.loadable_extensions

    def _load_file(self, path: Path, identifier: str, stage: str) -> ModuleType:
        """Stage 4: execute a module file under a unique module name."""
        path = Path(os.path.realpath(path))
        cached = self._modules.get(path)
        if cached is not None:
            return cached

        module_name = self._module_name_for(path)
        is_package = path.stem == self.config.entry.index_name

        if path.suffix == ".pyc":
            loader: Any = importlib.machinery.SourcelessFileLoader(module_name, str(path))
        else:
            loader = importlib.machinery.SourceFileLoader(module_name, str(path))

        spec = importlib.util.spec_from_file_location(
            module_name,
            str(path),
            loader=loader,
            submodule_search_locations=[str(path.parent)] if is_package else None,
        )
        if spec is None:
            raise PluginLoadError(f"Cannot create module spec for {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise

        self._modules.put(path, module)
        log_plugin_loaded(identifier, str(path), stage)
        return module

    def _module_name_for(self, path: Path) -> str:
        base = path.parent.name if path.stem == self.config.entry.index_name else path.stem
        safe = re.sub(r"\W", "_", base) or "plugin"
        digest = hashlib.sha256(str(path).encode()).hexdigest()[:12]
        return f"{LOADED_MODULE_PREFIX}_{safe}_{digest}"

    def get_cache_stats(self) -> Dict[str, Any]:
        return self._modules.get_stats()


def load(identifier: Union[str, Path], project_dir: Union[str, Path, None] = None) -> Optional[ModuleType]:
    """Load a plugin module with a one-off loader."""
    return PluginLoader(project_dir).load(identifier)
