"""
Parser plugin contract and built-in parsers.

A parser plugin is a package whose entry module exports a ``parser`` class
(or factory). Instances must carry the capability marker
``plugin_type = "parser"``, a ``type_pattern`` matched against the content
type token, an async ``parse`` and a synchronous ``parse_sync``.
"""

import json
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Mapping, Optional, Pattern, Protocol, Union, runtime_checkable

import toml
import yaml

from .error_handling import MissingOptionsError, PluginContractError

PARSER_TAG = "parser"


@runtime_checkable
class ParserPlugin(Protocol):
    """
    Protocol every registered parser implements.

    Attributes:
        plugin_type: Capability marker, must equal ``"parser"``
        type_pattern: Regex (string or compiled) searched in the type token,
            e.g. ``"^json$"`` to handle ``.json`` files
    """

    plugin_type: str
    type_pattern: Union[str, Pattern[str]]

    async def parse(self, content: str) -> Any:
        """Parse content, possibly suspending."""
        ...

    def parse_sync(self, content: str) -> Any:
        """Parse content without suspending."""
        ...


def conforms(obj: Any) -> bool:
    """Check that obj implements the parser plugin interface."""
    if not isinstance(obj, ParserPlugin):
        return False
    if not callable(getattr(obj, "parse", None)) or not callable(
        getattr(obj, "parse_sync", None)
    ):
        return False
    return isinstance(obj.type_pattern, (str, re.Pattern))


def validate_parser(obj: Any, capability_tag: str = PARSER_TAG) -> Any:
    """
    Return obj if it is a conforming parser plugin.

    Raises:
        PluginContractError: If the marker is missing or the interface is incomplete
    """
    marker = getattr(obj, "plugin_type", None)
    if marker != capability_tag:
        raise PluginContractError(
            f"{type(obj).__name__} has plugin_type {marker!r}, expected {capability_tag!r}"
        )
    if not conforms(obj):
        raise PluginContractError(
            f"{type(obj).__name__} does not implement the parser plugin interface"
        )
    return obj


def matches_type(parser: Any, type_token: Optional[str]) -> bool:
    """Check whether a parser's type_pattern matches a type token."""
    if not type_token:
        return False
    pattern = parser.type_pattern
    if isinstance(pattern, str):
        return re.search(pattern, type_token) is not None
    return pattern.search(type_token) is not None


@dataclass
class ParseOptions:
    """Options for content dispatch."""

    type: Optional[str] = None
    path: Optional[str] = None
    use_async: bool = True

    @property
    def type_token(self) -> Optional[str]:
        """Explicit type, else the extension of path without the dot."""
        if self.type:
            return self.type
        if self.path:
            return PurePath(self.path).suffix.lstrip(".") or None
        return None

    @classmethod
    def coerce(cls, value: Union["ParseOptions", Mapping[str, Any], None]) -> "ParseOptions":
        """Build options from a ParseOptions, a mapping or None."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            use_async = value.get("use_async", value.get("async", True))
            path = value.get("path")
            return cls(
                type=value.get("type"),
                path=str(path) if path is not None else None,
                use_async=bool(use_async),
            )
        raise MissingOptionsError(
            f"Options must be ParseOptions or a mapping, got {type(value).__name__}"
        )


class JsonParser:
    """Built-in JSON parser."""

    plugin_type = PARSER_TAG
    type_pattern = r"^json$"

    async def parse(self, content: str) -> Any:
        return self.parse_sync(content)

    def parse_sync(self, content: str) -> Any:
        return json.loads(content)


class YamlParser:
    """Built-in YAML parser (safe loader only)."""

    plugin_type = PARSER_TAG
    type_pattern = r"^ya?ml$"

    async def parse(self, content: str) -> Any:
        return self.parse_sync(content)

    def parse_sync(self, content: str) -> Any:
        return yaml.safe_load(content)


class TomlParser:
    """Built-in TOML parser."""

    plugin_type = PARSER_TAG
    type_pattern = r"^toml$"

    async def parse(self, content: str) -> Any:
        return self.parse_sync(content)

    def parse_sync(self, content: str) -> Any:
        return toml.loads(content)


def builtin_parsers() -> list:
    """Fresh instances of the built-in parsers, in dispatch order."""
    return [JsonParser(), YamlParser(), TomlParser()]
