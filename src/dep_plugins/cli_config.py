"""
Configuration management for dep-plugins.

Provides configurable settings for store layout conventions, entry file
resolution, dependency-tree providers, the parser registry and logging.
Settings come from defaults, an optional config file and environment
variable overrides, in that order.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)


@dataclass
class StoreConfig:
    """Module store layout conventions."""

    store_dir_name: str = "node_modules"
    group_prefix: str = "@"
    side_index_dir: str = ".pnpm"
    manifest_name: str = "package.json"


@dataclass
class EntryConfig:
    """Entry file resolution conventions."""

    index_name: str = "__init__"
    source_extension: str = ".py"
    loadable_extensions: List[str] = field(
        default_factory=lambda: [".py", ".pyw", ".pyc"]
    )
    conventional_entries: List[str] = field(
        default_factory=lambda: ["__init__.py", "index.py", "main.py", "__main__.py"]
    )

    @property
    def index_file(self) -> str:
        """Conventional index file name, e.g. ``__init__.py``."""
        return f"{self.index_name}{self.source_extension}"


@dataclass
class ProviderConfig:
    """External dependency-tree provider commands, in preference order."""

    commands: Dict[str, List[str]] = field(
        default_factory=lambda: {
            "pnpm": ["pnpm", "ls", "--json", "--depth", "Infinity"],
            "npm": ["npm", "ls", "--all", "--json", "--long"],
        }
    )
    timeout_seconds: Optional[int] = None
    dependency_keys: List[str] = field(
        default_factory=lambda: [
            "dependencies",
            "optionalDependencies",
            "devDependencies",
        ]
    )


@dataclass
class RegistryConfig:
    """Parser plugin discovery settings."""

    plugin_prefix: str = "dep-parser-"
    capability_tag: str = "parser"
    export_symbol: str = "parser"
    include_builtin_parsers: bool = False


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_sensitive_data_masking: bool = True


@dataclass
class PerformanceConfig:
    """Per-instance cache configuration."""

    enable_caching: bool = True
    max_cache_size: int = 1000
    cache_ttl_seconds: Optional[int] = None


@dataclass
class PluginsConfig:
    """Main configuration containing all subsections."""

    store: StoreConfig = field(default_factory=StoreConfig)
    entry: EntryConfig = field(default_factory=EntryConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)


_global_config: Optional[PluginsConfig] = None


def validate_config_values(config: PluginsConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if not config.store.store_dir_name:
        errors.append("store.store_dir_name must not be empty")
    if len(config.store.group_prefix) != 1:
        errors.append("store.group_prefix must be a single character")
    if not config.store.manifest_name:
        errors.append("store.manifest_name must not be empty")

    if not config.entry.loadable_extensions:
        errors.append("entry.loadable_extensions must not be empty")
    for ext in config.entry.loadable_extensions:
        if not ext.startswith("."):
            errors.append(f"entry.loadable_extensions entry must start with '.': {ext}")
    if not config.entry.conventional_entries:
        errors.append("entry.conventional_entries must not be empty")

    commands = config.providers.commands
    if not isinstance(commands, dict) or not commands:
        errors.append("providers.commands must define at least one provider")
        commands = {}
    for name, command in commands.items():
        if not isinstance(command, list) or not command or not all(
            isinstance(arg, str) for arg in command
        ):
            errors.append(f"providers.commands.{name} must be a list of strings")
    timeout = config.providers.timeout_seconds
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        errors.append("providers.timeout_seconds must be positive")

    if not config.registry.plugin_prefix:
        errors.append("registry.plugin_prefix must not be empty")
    if not config.registry.capability_tag:
        errors.append("registry.capability_tag must not be empty")

    max_size = config.performance.max_cache_size
    if not isinstance(max_size, int) or max_size <= 0:
        errors.append("performance.max_cache_size must be positive")
    ttl = config.performance.cache_ttl_seconds
    if ttl is not None and (not isinstance(ttl, (int, float)) or ttl <= 0):
        errors.append("performance.cache_ttl_seconds must be positive")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or YAML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                return yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".dep-plugins.json",
        Path.cwd() / ".dep-plugins.yaml",
        Path.cwd() / ".dep-plugins.yml",
        Path.home() / ".config" / "dep-plugins" / "config.json",
        Path.home() / ".config" / "dep-plugins" / "config.yaml",
        Path.home() / ".dep-plugins.json",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: PluginsConfig) -> None:
    """Load environment variable overrides."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str, default: Optional[int] = None) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else default
        except ValueError:
            console.print(
                f"⚠️  Invalid integer value for {key}, using default", style="yellow"
            )
            return default

    if store_dir := os.environ.get("DEP_PLUGINS_STORE_DIR"):
        config.store.store_dir_name = store_dir
    if manifest := os.environ.get("DEP_PLUGINS_MANIFEST"):
        config.store.manifest_name = manifest

    if prefix := os.environ.get("DEP_PLUGINS_PLUGIN_PREFIX"):
        config.registry.plugin_prefix = prefix
    config.registry.include_builtin_parsers = get_env_bool(
        "DEP_PLUGINS_BUILTIN_PARSERS", config.registry.include_builtin_parsers
    )

    if timeout := get_env_int("DEP_PLUGINS_PROVIDER_TIMEOUT"):
        config.providers.timeout_seconds = timeout
    if order := os.environ.get("DEP_PLUGINS_PROVIDERS"):
        # Comma-separated provider names select and reorder the known commands
        names = [name.strip() for name in order.split(",") if name.strip()]
        known = config.providers.commands
        selected = {name: known[name] for name in names if name in known}
        if selected:
            config.providers.commands = selected
        else:
            console.print(
                f"⚠️  No known providers in DEP_PLUGINS_PROVIDERS={order}",
                style="yellow",
            )

    if log_level := os.environ.get("DEP_PLUGINS_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()

    config.performance.enable_caching = get_env_bool(
        "DEP_PLUGINS_ENABLE_CACHING", config.performance.enable_caching
    )
    if cache_size := get_env_int("DEP_PLUGINS_MAX_CACHE_SIZE"):
        config.performance.max_cache_size = cache_size


# Mappings whose key order is meaningful; a file value replaces the default
REPLACED_KEYS = {"commands"}


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            if key in REPLACED_KEYS:
                setattr(config, key, value)
            elif isinstance(getattr(config, key), dict) and isinstance(value, dict):
                getattr(config, key).update(value)
            else:
                setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def config_from_data(file_config: Optional[Dict[str, Any]]) -> PluginsConfig:
    """Build a configuration from file data alone, without validation."""
    config = PluginsConfig()

    if file_config:
        for section_name in (
            "store",
            "entry",
            "providers",
            "registry",
            "logging",
            "performance",
        ):
            if isinstance(file_config.get(section_name), dict):
                apply_config_section(
                    getattr(config, section_name),
                    file_config[section_name],
                    section_name,
                )

    return config


def build_config(file_config: Optional[Dict[str, Any]] = None) -> PluginsConfig:
    """Build a configuration from file data and environment overrides."""
    config = config_from_data(file_config)
    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = PluginsConfig()

    return config


def load_config() -> PluginsConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    file_config = None
    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)

    _global_config = build_config(file_config)
    return _global_config


def get_config() -> PluginsConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file."""
    defaults = PluginsConfig()
    sample_config = {
        "store": {
            "store_dir_name": defaults.store.store_dir_name,
            "group_prefix": defaults.store.group_prefix,
            "side_index_dir": defaults.store.side_index_dir,
            "manifest_name": defaults.store.manifest_name,
        },
        "entry": {
            "loadable_extensions": defaults.entry.loadable_extensions,
            "conventional_entries": defaults.entry.conventional_entries,
        },
        "providers": {
            "commands": defaults.providers.commands,
            "timeout_seconds": defaults.providers.timeout_seconds,
        },
        "registry": {
            "plugin_prefix": defaults.registry.plugin_prefix,
            "include_builtin_parsers": defaults.registry.include_builtin_parsers,
        },
        "logging": {
            "log_level": defaults.logging.log_level,
            "log_format": defaults.logging.log_format,
            "enable_sensitive_data_masking": defaults.logging.enable_sensitive_data_masking,
        },
        "performance": {
            "enable_caching": defaults.performance.enable_caching,
            "max_cache_size": defaults.performance.max_cache_size,
        },
    }

    return json.dumps(sample_config, indent=2)
