"""
Core functionality tests for dep-plugins.
Tests version comparison, store enumeration, tree extraction and entry resolution.
"""

import json
import os
import sys
from pathlib import Path

import pytest

from dep_plugins.dependency import PackageRecord
from dep_plugins.entry_resolver import EntryResolver, read_manifest, resolve_entry
from dep_plugins.error_handling import (
    EntryNotFoundError,
    MalformedTreeError,
    TreeProviderError,
)
from dep_plugins.store_walker import StoreWalker, enumerate_packages
from dep_plugins.tree_extractor import (
    ProviderResult,
    TreeExtractor,
    TreeProvider,
    flatten_tree,
    normalize_tree,
    parse_tree_output,
    select_latest,
)
from dep_plugins.versioning import compare_versions, is_valid_version, newer_version

from conftest import make_package, real


class FakeProvider:
    """Provider stand-in returning a canned result."""

    def __init__(self, name, output=None, return_code=0, error=None):
        self.name = name
        self.result = ProviderResult(name, output, return_code, error)
        self.calls = 0

    async def run(self, project_dir):
        self.calls += 1
        return self.result


class TestVersioning:
    """Test concrete version comparison."""

    def test_numeric_components_compare_numerically(self):
        assert compare_versions("1.2.0", "1.10.0") == -1
        assert compare_versions("1.10.0", "1.2.0") == 1
        assert newer_version("1.2.0", "1.10.0") == "1.10.0"

    def test_prerelease_sorts_before_release(self):
        assert compare_versions("2.0.0-beta.1", "2.0.0") == -1
        assert compare_versions("2.0.0-alpha", "2.0.0-beta") == -1
        assert compare_versions("2.0.0-2", "2.0.0-10") == -1
        assert compare_versions("2.0.0-rc.1", "2.0.0-1") == 1

    def test_build_metadata_ignored(self):
        assert compare_versions("1.0.0+build.1", "1.0.0+build.2") == 0
        assert compare_versions("v1.0.0", "1.0.0") == 0

    def test_invalid_versions(self):
        assert not is_valid_version("latest")
        assert not is_valid_version("link:../local")
        assert not is_valid_version("^1.0.0")
        with pytest.raises(ValueError):
            compare_versions("latest", "1.0.0")


class TestStoreWalker:
    """Test module store enumeration across layouts."""

    def test_flat_store(self, flat_store):
        packages = StoreWalker().enumerate(flat_store)

        assert packages == {
            real(flat_store / "alpha"),
            real(flat_store / "@scope" / "beta"),
            real(flat_store / "gamma"),
            real(flat_store / "gamma" / "node_modules" / "delta"),
        }

    def test_enumeration_is_deterministic(self, flat_store):
        walker = StoreWalker()
        assert walker.enumerate(flat_store) == walker.enumerate(flat_store)
        assert walker.walk(flat_store) == walker.walk(flat_store)

    def test_symlinked_package_appears_once(self, flat_store):
        paths = StoreWalker().walk(flat_store)

        assert paths.count(real(flat_store / "alpha")) == 1
        assert all(path == real(path) for path in paths)

    def test_side_indexed_store(self, pnpm_store):
        packages = enumerate_packages(pnpm_store)

        side_index = pnpm_store / ".pnpm"
        assert packages == {
            real(side_index / "foo@1.0.0" / "node_modules" / "foo"),
            real(side_index / "bar@2.0.0" / "node_modules" / "bar"),
        }

    def test_scoped_side_indexed_package(self, project_dir):
        store = project_dir / "node_modules"
        links = store / ".pnpm" / "@s+x@1.0.0" / "node_modules"
        scoped = make_package(links / "@s", "x")
        dep = make_package(store / ".pnpm" / "dep@2.0.0" / "node_modules", "dep", version="2.0.0")
        os.symlink(dep, links / "dep", target_is_directory=True)
        (store / "@s").mkdir()
        os.symlink(scoped, store / "@s" / "x", target_is_directory=True)

        packages = StoreWalker().enumerate(store)

        assert packages == {real(scoped), real(dep)}

    def test_scoped_package_siblings_in_linked_store(self, project_dir):
        store = project_dir / "node_modules"
        vendor = project_dir / "vendor" / "node_modules"
        scoped = make_package(vendor / "@s", "x")
        sibling = make_package(vendor, "dep")
        (store / "@s").mkdir()
        os.symlink(scoped, store / "@s" / "x", target_is_directory=True)

        packages = StoreWalker().enumerate(store)

        assert packages == {real(scoped), real(sibling)}

    def test_exclude(self, flat_store):
        packages = StoreWalker().enumerate(flat_store, exclude=[flat_store / "gamma"])

        assert real(flat_store / "gamma") not in packages
        assert real(flat_store / "alpha") in packages

    def test_missing_store_is_empty(self, tmp_path):
        assert StoreWalker().enumerate(tmp_path / "does-not-exist") == set()

    def test_link_cycle_terminates(self, flat_store):
        delta = flat_store / "gamma" / "node_modules" / "delta"
        (delta / "node_modules").mkdir()
        os.symlink(flat_store / "gamma", delta / "node_modules" / "gamma-again")

        packages = StoreWalker().enumerate(flat_store)

        assert len(packages) == 4

    def test_dot_entries_skipped(self, project_dir):
        store = project_dir / "node_modules"
        make_package(store, "visible")
        (store / ".bin").mkdir()
        (store / ".cache-file").write_text("")

        assert StoreWalker().enumerate(store) == {real(store / "visible")}


class TestTreeParsing:
    """Test provider output parsing and normalization."""

    def test_single_document(self):
        roots = parse_tree_output('{"name": "app", "version": "1.0.0"}')
        assert roots == [{"name": "app", "version": "1.0.0"}]

    def test_line_stream(self):
        output = "npm WARN something\n[{\"name\": \"app\"}]\ntrailing noise\n"
        assert parse_tree_output(output) == [{"name": "app"}]

    def test_malformed_output(self):
        with pytest.raises(MalformedTreeError):
            parse_tree_output("not json at all")
        with pytest.raises(MalformedTreeError):
            parse_tree_output('"just a string"')

    def test_mapping_children_fill_names(self):
        raw = {
            "name": "app",
            "dependencies": {
                "left": {"version": "1.0.0"},
                "right": "2.0.0",
            },
        }
        node = normalize_tree(raw)

        assert [child.name for child in node.children] == ["left", "right"]
        assert node.children[1].version == "2.0.0"

    def test_list_children(self):
        raw = {"name": "app", "dependencies": [{"name": "left", "version": "1.0.0"}]}
        node = normalize_tree(raw)

        assert node.children[0].name == "left"

    def test_location_hints(self):
        node = normalize_tree(
            {"name": "x", "version": "1.0.0", "resolved": "file:/tmp/x"}
        )
        assert node.hint == "/tmp/x"

    def test_object_cycle_terminates(self):
        raw = {"name": "a", "version": "1.0.0", "dependencies": []}
        raw["dependencies"].append(raw)

        node = normalize_tree(raw)

        assert node.name == "a"
        assert node.children == []

    def test_root_without_location_is_the_project(self, tmp_path):
        raw = {
            "name": "app",
            "version": "1.0.0",
            "dependencies": {"left": {"version": "1.0.0"}},
        }

        records = flatten_tree([normalize_tree(raw)], tmp_path)

        assert [(record.name, record.path) for record in records] == [
            ("left", tmp_path.resolve() / "node_modules" / "left")
        ]

    def test_repeated_occurrence_cycle_terminates(self, tmp_path):
        a_path = str(tmp_path / "node_modules" / "a")
        b_path = str(tmp_path / "node_modules" / "b")
        raw = {
            "name": "a",
            "version": "1.0.0",
            "path": a_path,
            "dependencies": {
                "b": {
                    "version": "1.0.0",
                    "path": b_path,
                    "dependencies": {
                        "a": {
                            "version": "1.0.0",
                            "path": a_path,
                            "dependencies": {"b": {"version": "1.0.0", "path": b_path}},
                        }
                    },
                }
            },
        }

        records = flatten_tree([normalize_tree(raw)], tmp_path)

        assert [record.name for record in records] == ["a", "b"]


class TestVersionSelection:
    """Test deduplication of multiple installed versions."""

    def test_newest_version_wins(self, tmp_path):
        records = [
            PackageRecord("dep", "1.2.0", tmp_path / "a"),
            PackageRecord("dep", "1.10.0", tmp_path / "b"),
        ]
        assert select_latest(records)[0].version == "1.10.0"

    def test_deepest_path_without_valid_versions(self, tmp_path):
        records = [
            PackageRecord("dep", "latest", tmp_path / "a"),
            PackageRecord("dep", "next", tmp_path / "x" / "node_modules" / "a"),
        ]
        assert select_latest(records)[0].version == "next"

    def test_first_seen_breaks_ties(self, tmp_path):
        records = [
            PackageRecord("dep", "1.0.0", tmp_path / "first"),
            PackageRecord("dep", "1.0.0", tmp_path / "second"),
            PackageRecord("other", "1.0.0", tmp_path / "other"),
        ]
        selected = select_latest(records)

        assert [record.name for record in selected] == ["dep", "other"]
        assert selected[0].path == tmp_path / "first"


class TestTreeExtractor:
    """Test provider fallback and end-to-end extraction."""

    def _tree(self, project_dir):
        store = project_dir / "node_modules"
        return json.dumps(
            [
                {
                    "name": "project",
                    "version": "0.1.0",
                    "path": str(project_dir),
                    "dependencies": {
                        "a": {"version": "1.2.0", "path": str(store / "a")},
                        "b": {
                            "version": "1.0.0",
                            "path": str(store / "b"),
                            "dependencies": {
                                "a": {
                                    "version": "1.10.0",
                                    "path": str(store / "b" / "node_modules" / "a"),
                                }
                            },
                        },
                    },
                }
            ]
        )

    @pytest.mark.asyncio
    async def test_extract_keeps_newest(self, project_dir):
        provider = FakeProvider("pnpm", self._tree(project_dir))
        extractor = TreeExtractor(providers=[provider])

        records = await extractor.extract(project_dir)

        assert [(r.name, r.version) for r in records] == [("a", "1.10.0"), ("b", "1.0.0")]

    @pytest.mark.asyncio
    async def test_falls_back_to_next_provider(self, project_dir):
        failing = FakeProvider("pnpm", "", return_code=127, error="not found")
        working = FakeProvider("npm", self._tree(project_dir))
        extractor = TreeExtractor(providers=[failing, working])

        result = await extractor.acquire(project_dir)

        assert result.provider == "npm"
        assert failing.calls == 1

    @pytest.mark.asyncio
    async def test_nonzero_exit_with_output_is_used(self, project_dir):
        partial = FakeProvider("pnpm", self._tree(project_dir), return_code=1)
        unused = FakeProvider("npm", self._tree(project_dir))
        extractor = TreeExtractor(providers=[partial, unused])

        records = await extractor.extract(project_dir)

        assert len(records) == 2
        assert unused.calls == 0

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, project_dir):
        extractor = TreeExtractor(
            providers=[FakeProvider("pnpm", None, error="boom"), FakeProvider("npm", "  ")]
        )
        with pytest.raises(TreeProviderError):
            await extractor.extract(project_dir)

    @pytest.mark.asyncio
    async def test_malformed_output_raises(self, project_dir):
        extractor = TreeExtractor(providers=[FakeProvider("pnpm", "garbage")])
        with pytest.raises(MalformedTreeError):
            await extractor.extract(project_dir)

    @pytest.mark.asyncio
    async def test_results_cached_per_project(self, project_dir):
        provider = FakeProvider("pnpm", self._tree(project_dir))
        extractor = TreeExtractor(providers=[provider])

        await extractor.extract(project_dir)
        await extractor.extract(project_dir)
        assert provider.calls == 1

        await extractor.extract(project_dir, refresh=True)
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_with_entries(self, project_dir):
        store = project_dir / "node_modules"
        make_package(store, "a", files={"__init__.py": ""})
        tree = {
            "name": "project",
            "path": str(project_dir),
            "dependencies": {"a": {"version": "1.0.0", "path": str(store / "a")}},
        }
        extractor = TreeExtractor(providers=[FakeProvider("npm", json.dumps(tree))])

        records = await extractor.extract(project_dir, with_entries=True)

        assert records[0].entry_path == real(store / "a" / "__init__.py")

    @pytest.mark.asyncio
    async def test_provider_runs_command(self, project_dir):
        provider = TreeProvider(
            "python", [sys.executable, "-c", "print('{\"name\": \"x\"}')"]
        )
        result = await provider.run(project_dir)

        assert result.return_code == 0
        assert parse_tree_output(result.output) == [{"name": "x"}]

    @pytest.mark.asyncio
    async def test_provider_missing_command(self, project_dir):
        provider = TreeProvider("missing", ["definitely-not-a-real-command-xyz"])
        result = await provider.run(project_dir)

        assert not result.produced
        assert "Could not start" in result.error

    @pytest.mark.asyncio
    async def test_provider_timeout(self, project_dir):
        provider = TreeProvider(
            "slow", [sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.2
        )
        result = await provider.run(project_dir)

        assert not result.produced
        assert "Timed out" in result.error


class TestEntryResolver:
    """Test package entry file resolution."""

    def test_index_fallback(self, temp_dir):
        package = make_package(temp_dir, "pkg", files={"__init__.py": ""})
        assert resolve_entry(package) == real(package / "__init__.py")

    def test_module_field_preferred(self, temp_dir):
        package = make_package(
            temp_dir,
            "pkg",
            manifest={"module": "esm.py", "main": "main_entry.py"},
            files={"esm.py": "", "main_entry.py": ""},
        )
        assert resolve_entry(package).name == "esm.py"

    def test_main_without_extension(self, temp_dir):
        package = make_package(
            temp_dir, "pkg", manifest={"main": "lib/core"}, files={"lib/core.py": ""}
        )
        assert resolve_entry(package) == real(package / "lib" / "core.py")

    def test_main_directory(self, temp_dir):
        package = make_package(
            temp_dir, "pkg", manifest={"main": "lib/"}, files={"lib/__init__.py": ""}
        )
        assert resolve_entry(package) == real(package / "lib" / "__init__.py")

    def test_missing_main_falls_back_to_conventions(self, temp_dir):
        package = make_package(
            temp_dir, "pkg", manifest={"main": "gone.py"}, files={"index.py": ""}
        )
        assert resolve_entry(package).name == "index.py"

    def test_malformed_manifest(self, temp_dir):
        package = temp_dir / "pkg"
        package.mkdir()
        (package / "package.json").write_text("{not json")
        (package / "__init__.py").write_text("")

        assert read_manifest(package) == {}
        assert resolve_entry(package).name == "__init__.py"

    def test_no_entry(self, temp_dir):
        package = make_package(temp_dir, "pkg")

        with pytest.raises(EntryNotFoundError):
            resolve_entry(package)
        assert EntryResolver().try_resolve_entry(package) is None

    def test_results_cached(self, temp_dir):
        package = make_package(temp_dir, "pkg", files={"__init__.py": ""})
        resolver = EntryResolver()

        resolver.resolve_entry(package)
        resolver.resolve_entry(Path(str(package)))

        assert resolver.get_cache_stats()["hits"] == 1
