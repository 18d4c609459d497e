"""
Shared fixtures for dep-plugins tests.
Builds flat and side-indexed module stores and parser plugin packages in tmp_path.
"""

import json
import os
import textwrap
from pathlib import Path
from typing import Dict, Optional

import pytest

from dep_plugins.cli_config import reset_config
from dep_plugins.error_handling import get_error_handler
from dep_plugins.structured_logging import configure_logging

JSON_PLUGIN = '''
import json


class {class_name}:
    plugin_type = "parser"
    type_pattern = r"{pattern}"

    async def parse(self, content):
        return json.loads(content)

    def parse_sync(self, content):
        return json.loads(content)


parser = {class_name}
'''

TAGGED_PLUGIN = '''
class {class_name}:
    plugin_type = "parser"
    type_pattern = r"{pattern}"

    async def parse(self, content):
        return {{"parser": "{class_name}", "mode": "async", "content": content}}

    def parse_sync(self, content):
        return {{"parser": "{class_name}", "mode": "sync", "content": content}}


parser = {class_name}
'''


def make_package(
    parent: Path,
    name: str,
    version: str = "1.0.0",
    manifest: Optional[Dict] = None,
    files: Optional[Dict[str, str]] = None,
) -> Path:
    """Create a package directory with a manifest and files."""
    package_dir = parent / name
    package_dir.mkdir(parents=True, exist_ok=True)

    data = {"name": name, "version": version}
    if manifest:
        data.update(manifest)
    (package_dir / "package.json").write_text(json.dumps(data))

    for relative, content in (files or {}).items():
        target = package_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(content))

    return package_dir


def make_plugin(store: Path, name: str, source: str, **kwargs) -> Path:
    """Create a plugin package whose __init__.py holds source."""
    return make_package(store, name, files={"__init__.py": source}, **kwargs)


def real(path) -> Path:
    return Path(os.path.realpath(path))


@pytest.fixture(scope="session", autouse=True)
def error_handler():
    """Create the shared error handler before any CliRunner swaps out stderr."""
    return get_error_handler()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Run every test with default configuration and no config files."""
    for key in list(os.environ):
        if key.startswith("DEP_PLUGINS_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()
    configure_logging()


@pytest.fixture
def temp_dir(tmp_path):
    """Scratch directory separate from the project fixtures."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return scratch


@pytest.fixture
def project_dir(tmp_path):
    """Empty project with an empty module store."""
    project = tmp_path / "project"
    (project / "node_modules").mkdir(parents=True)
    (project / "package.json").write_text(json.dumps({"name": "project", "version": "0.1.0"}))
    return project


@pytest.fixture
def flat_store(project_dir):
    """
    Flat store:

        node_modules/alpha
        node_modules/alias -> alpha
        node_modules/@scope/beta
        node_modules/gamma/node_modules/delta
    """
    store = project_dir / "node_modules"
    alpha = make_package(store, "alpha")
    make_package(store / "@scope", "beta")
    gamma = make_package(store, "gamma")
    make_package(gamma / "node_modules", "delta", version="2.0.0")
    os.symlink(alpha, store / "alias", target_is_directory=True)
    return store


@pytest.fixture
def pnpm_store(project_dir):
    """
    Side-indexed store:

        node_modules/foo -> .pnpm/foo@1.0.0/node_modules/foo
        .pnpm/foo@1.0.0/node_modules/bar -> ../../bar@2.0.0/node_modules/bar
        .pnpm/bar@2.0.0/node_modules/bar
    """
    store = project_dir / "node_modules"
    side_index = store / ".pnpm"
    foo = make_package(side_index / "foo@1.0.0" / "node_modules", "foo")
    bar = make_package(side_index / "bar@2.0.0" / "node_modules", "bar", version="2.0.0")
    os.symlink(bar, foo.parent / "bar", target_is_directory=True)
    os.symlink(foo, store / "foo", target_is_directory=True)
    return store


@pytest.fixture
def plugin_store(project_dir):
    """
    Store holding parser plugins in every state discovery must handle:
    two json parsers, a yaml parser, an unrelated package, a plugin that
    fails to import, an untagged export and a tagged but incomplete one.
    """
    store = project_dir / "node_modules"
    make_plugin(
        store,
        "dep-parser-alpha",
        JSON_PLUGIN.format(class_name="AlphaParser", pattern="^json$"),
    )
    make_plugin(
        store,
        "dep-parser-beta",
        TAGGED_PLUGIN.format(class_name="BetaParser", pattern="^json$"),
    )
    make_plugin(
        store,
        "dep-parser-broken",
        "raise RuntimeError('plugin failed to import')\n",
    )
    make_plugin(
        store,
        "dep-parser-formatter",
        """
        class Formatter:
            plugin_type = "formatter"
            type_pattern = "^json$"

            async def parse(self, content):
                return content

            def parse_sync(self, content):
                return content


        parser = Formatter
        """,
    )
    make_plugin(
        store,
        "dep-parser-incomplete",
        """
        class Incomplete:
            plugin_type = "parser"
            type_pattern = "^json$"

            async def parse(self, content):
                return content


        parser = Incomplete
        """,
    )
    make_package(
        store,
        "dep-parser-yaml",
        manifest={"main": "lib/yaml_parser.py"},
        files={
            "lib/yaml_parser.py": TAGGED_PLUGIN.format(
                class_name="YamlishParser", pattern="^ya?ml$"
            )
        },
    )
    make_plugin(
        store,
        "unrelated",
        TAGGED_PLUGIN.format(class_name="Unrelated", pattern="^json$"),
    )
    return store
