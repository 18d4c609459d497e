"""
Parser registry and content dispatch.

The registry discovers parser plugins installed in a project's module store,
keeps them in discovery order and routes content to the first parser whose
type pattern matches the content's type token.

Example:
    >>> registry = ParserRegistry("/path/to/project")
    >>> await registry.parse_content('{"a": 1}', {"type": "json"})
    {'a': 1}
"""

import asyncio
import inspect
from pathlib import Path
from typing import Any, Awaitable, List, Mapping, Optional, Union

from .cli_config import PluginsConfig, get_config
from .error_handling import ErrorCategory, MissingOptionsError, get_error_handler
from .parsers import (
    ParseOptions,
    builtin_parsers,
    conforms,
    matches_type,
    validate_parser,
)
from .plugin_loader import PluginLoader
from .store_walker import StoreWalker
from .structured_logging import (
    get_loader_logger,
    get_registry_logger,
    log_registry_ready,
)

OptionsLike = Union[ParseOptions, Mapping[str, Any], None]


class ParserRegistry:
    """
    Registry of parser plugins for one project.

    Discovery runs at most once per instance, on first use. Every caller
    that needs the parser list awaits the same initialization task, so a
    dispatch issued before discovery finished still sees every plugin.
    """

    def __init__(
        self,
        project_dir: Union[str, Path, None] = None,
        config: Optional[PluginsConfig] = None,
        walker: Optional[StoreWalker] = None,
        loader: Optional[PluginLoader] = None,
        include_builtin: Optional[bool] = None,
    ):
        self.config = config or get_config()
        self.project_dir = Path(project_dir or Path.cwd()).resolve()
        self.walker = walker or StoreWalker(self.config.store)
        self.loader = loader or PluginLoader(self.project_dir, self.config)
        self.include_builtin = (
            self.config.registry.include_builtin_parsers
            if include_builtin is None
            else include_builtin
        )
        self.logger = get_registry_logger()

        self._parsers: List[Any] = []
        # Created lazily; __init__ may run outside an event loop
        self._init_task: Optional["asyncio.Future[None]"] = None

    def register(self, parser: Any) -> None:
        """
        Register a parser implementation.

        Parsers are tried in registration order.

        Raises:
            PluginContractError: If parser does not implement the plugin contract
        """
        validate_parser(parser, self.config.registry.capability_tag)
        self._parsers.append(parser)
        self.logger.debug("parser_registered", parser=type(parser).__name__)

    @property
    def registered_parsers(self) -> List[str]:
        """Class names of the registered parsers, in dispatch order."""
        return [type(parser).__name__ for parser in self._parsers]

    @property
    def parsers(self) -> List[Any]:
        return list(self._parsers)

    @property
    def is_ready(self) -> bool:
        return self._init_task is not None and self._init_task.done()

    def initialize(self) -> "asyncio.Future[None]":
        """Start discovery if needed and return the shared initialization task."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._discover())
        return self._init_task

    async def ready(self) -> None:
        """
        Wait until discovery has completed.

        A failed discovery pass raises its exception in every waiter.
        """
        await asyncio.shield(self.initialize())

    async def _discover(self) -> None:
        """
        Walk the store and load every plugin candidate.

        The walk and the module loads run synchronously inside this task,
        without suspending, so a discovery pass blocks the event loop until
        it completes.
        """
        registry_config = self.config.registry
        store_root = self.project_dir / self.config.store.store_dir_name
        start_time = asyncio.get_running_loop().time()

        # No await below, so the shared loggers carry this project's context
        # for exactly this pass
        event_loggers = (self.logger, get_loader_logger())
        for logger in event_loggers:
            logger.set_context(project_dir=str(self.project_dir))
        try:
            candidates = [
                path
                for path in self.walker.walk(store_root)
                if path.name.startswith(registry_config.plugin_prefix)
            ]
            self.logger.debug(
                "plugin_candidates", store_root=str(store_root), count=len(candidates)
            )

            for path in candidates:
                parser = self._instantiate(path)
                if parser is not None:
                    self._parsers.append(parser)
        finally:
            for logger in event_loggers:
                logger.clear_context()

        if self.include_builtin:
            self._parsers.extend(builtin_parsers())

        duration_ms = int((asyncio.get_running_loop().time() - start_time) * 1000)
        log_registry_ready(
            str(self.project_dir), len(candidates), len(self._parsers), duration_ms
        )

    def _instantiate(self, path: Path) -> Optional[Any]:
        """Load a candidate package and build its parser, or None."""
        registry_config = self.config.registry

        module = self.loader.load(str(path))
        if module is None:
            return None

        export = getattr(module, registry_config.export_symbol, None)
        if export is None:
            self.logger.debug("no_parser_export", package=path.name)
            return None

        try:
            if inspect.isclass(export):
                parser = export()
            elif conforms(export):
                parser = export
            elif callable(export):
                parser = export()
            else:
                parser = export
        except (Exception, SystemExit) as e:
            get_error_handler().error(
                ErrorCategory.PLUGIN,
                f"Parser export of {path.name} failed to construct: {e}",
                "registry",
                "_instantiate",
                exception=e,
                details={"package": str(path)},
            )
            return None

        marker = getattr(parser, "plugin_type", None)
        if marker != registry_config.capability_tag:
            self.logger.debug(
                "capability_mismatch", package=path.name, plugin_type=repr(marker)
            )
            return None

        if not conforms(parser):
            get_error_handler().warning(
                ErrorCategory.VALIDATION,
                f"Rejected non-conforming parser plugin: {path.name}",
                "registry",
                "_instantiate",
                details={"package": str(path), "parser": type(parser).__name__},
            )
            return None

        return parser

    def _find_parser(self, options: ParseOptions) -> Optional[Any]:
        type_token = options.type_token
        for parser in self._parsers:
            if matches_type(parser, type_token):
                return parser
        return None

    async def parse_content(self, content: str, options: OptionsLike = None) -> Any:
        """
        Parse content with the first matching parser.

        Args:
            content: Text to parse
            options: ParseOptions or a mapping with ``type``, ``path`` and
                ``use_async`` (``async`` is accepted as an alias)

        Returns:
            The parser's result, or None if no parser matches the type token
        """
        options = ParseOptions.coerce(options)
        await self.ready()

        parser = self._find_parser(options)
        if parser is None:
            self.logger.debug("no_matching_parser", type_token=options.type_token)
            return None

        if not options.use_async:
            return parser.parse_sync(content)

        result = parser.parse(content)
        if inspect.isawaitable(result):
            result = await result
        return result

    def parse_content_sync(self, content: str, options: OptionsLike = None) -> Any:
        """Parse content with the parsers registered so far, without suspending."""
        options = ParseOptions.coerce(options)
        parser = self._find_parser(options)
        if parser is None:
            return None
        return parser.parse_sync(content)

    def parse_file(
        self, path: Union[str, Path], options: OptionsLike
    ) -> Awaitable[Any]:
        """
        Read a file and parse it with the first matching parser.

        Options are checked before anything else happens, so calling without
        them fails immediately rather than when the result is awaited.

        Raises:
            MissingOptionsError: If options is None
        """
        if options is None:
            raise MissingOptionsError("parse_file() requires options")

        options = ParseOptions.coerce(options)
        options = ParseOptions(
            type=options.type, path=str(path), use_async=options.use_async
        )
        return self._parse_file(Path(path), options)

    async def _parse_file(self, path: Path, options: ParseOptions) -> Any:
        await self.ready()
        with open(path, encoding="utf-8") as f:
            content = f.read()
        return await self.parse_content(content, options)


async def parse_content(
    content: str,
    options: OptionsLike = None,
    project_dir: Union[str, Path, None] = None,
) -> Any:
    """Parse content with a one-off registry for project_dir."""
    return await ParserRegistry(project_dir).parse_content(content, options)


def parse_file(
    path: Union[str, Path],
    options: OptionsLike,
    project_dir: Union[str, Path, None] = None,
) -> Awaitable[Any]:
    """Parse a file with a one-off registry for project_dir."""
    return ParserRegistry(project_dir).parse_file(path, options)
