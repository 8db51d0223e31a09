"""Tests for index.indexer: symbol table, dependency graph and incremental updates."""

import json

import pytest

from repo_lens.config.settings import IndexerConfig
from repo_lens.errors import IndexNotFoundError, SymbolNotFoundError
from repo_lens.index.indexer import CodebaseIndexer, count_loc
from repo_lens.index.models import EdgeKind, SymbolKind


@pytest.fixture
def indexer(sample_repo, cache_dir):
    return CodebaseIndexer(sample_repo, "sample", cache_dir=cache_dir)


@pytest.fixture
def built(indexer):
    return indexer.build_index()


class TestCountLoc:

    def test_skips_blank_and_comment_lines(self):
        src = "# header\n\nx = 1\n    # indented comment\ny = 2\n"
        assert count_loc(src) == 2


class TestBuildIndex:

    def test_counts_files_and_symbols(self, built):
        assert built.total_files == 4
        assert set(built.files) == {"pkg/__init__.py", "pkg/a.py", "pkg/b.py", "pkg/models.py"}
        assert "pkg/b.py:foo:1" in built.symbols
        assert "pkg/a.py:run:4" in built.symbols

    def test_methods_are_symbols(self, built):
        method = built.symbols["pkg/models.py:Child.handle:16"]
        assert method.kind == SymbolKind.METHOD
        assert method.name == "Child.handle"
        assert "pkg/models.py:Child.handle:16" in built.files["pkg/models.py"].methods

    def test_total_loc_is_sum_of_files(self, built):
        assert built.total_loc == sum(f.loc for f in built.files.values())

    def test_import_and_call_edges(self, built):
        graph = built.dependencies
        assert "pkg/b.py" in graph.dependencies_of("pkg/a.py")
        assert graph.edge_kind("pkg/a.py", "pkg/b.py") == EdgeKind.IMPORT
        assert "pkg/b.py:foo:1" in graph.dependencies_of("pkg/a.py:run:4")
        assert graph.edge_kind("pkg/a.py:run:4", "pkg/b.py:foo:1") == EdgeKind.CALL

    def test_method_call_and_extends_edges(self, built):
        graph = built.dependencies
        assert "pkg/models.py:validate_item:20" in graph.dependencies_of("pkg/models.py:Child.handle:16")
        assert graph.edge_kind("pkg/models.py:Child:10", "pkg/models.py:Base:4") == EdgeKind.EXTENDS

    def test_reverse_edges_mirror_forward_edges(self, built):
        graph = built.dependencies
        for source, targets in graph.edges.items():
            for target in targets:
                assert source in graph.dependents_of(target)
        for target, sources in graph.reverse_edges.items():
            for source in sources:
                assert target in graph.dependencies_of(source)

    def test_every_file_and_symbol_is_a_node(self, built):
        graph = built.dependencies
        assert set(built.files) <= graph.nodes
        assert set(built.symbols) <= graph.nodes

    def test_build_is_idempotent(self, indexer, built):
        again = indexer.build_index()
        assert set(again.symbols) == set(built.symbols)
        assert again.dependencies.to_dict() == built.dependencies.to_dict()
        assert again.total_loc == built.total_loc

    def test_metadata(self, built):
        assert built.metadata.languages == {"python": 4}
        assert built.metadata.complexity.max >= 2
        assert sum(built.metadata.complexity.distribution.values()) == len(built.functions) + sum(
            len(c.methods) for c in built.classes.values()
        )

    def test_unparsable_file_is_skipped(self, sample_repo, indexer):
        (sample_repo / "pkg" / "broken.py").write_text("def broken(:\n")
        index = indexer.build_index()
        assert "pkg/broken.py" not in index.files
        assert index.total_files == 4

    def test_skip_dirs_and_extensions(self, sample_repo, cache_dir):
        (sample_repo / "node_modules").mkdir()
        (sample_repo / "node_modules" / "x.py").write_text("def x():\n    pass\n")
        (sample_repo / "notes.txt").write_text("not code")
        indexer = CodebaseIndexer(sample_repo, "sample", cache_dir=cache_dir, config=IndexerConfig())
        rels = [indexer.relative_path(p) for p in indexer.find_code_files()]
        assert "node_modules/x.py" not in rels
        assert "notes.txt" not in rels
        assert rels == sorted(rels)


class TestQueries:

    def test_search_functions_substring(self, indexer, built):
        names = [f.name for f in indexer.search_functions("VALID")]
        assert names == ["validate_item"]

    def test_search_classes(self, indexer, built):
        assert {c.name for c in indexer.search_classes("")} == {"Base", "Child"}

    def test_get_dependencies_and_reverse(self, indexer, built):
        assert "pkg/b.py" in indexer.get_dependencies("pkg/a.py")
        assert "pkg/a.py" in indexer.get_reverse_dependencies("pkg/b.py")
        assert "pkg/a.py:run:4" in indexer.get_reverse_dependencies("pkg/b.py:foo:1")

    def test_unknown_node_raises(self, indexer, built):
        with pytest.raises(SymbolNotFoundError):
            indexer.get_dependencies("pkg/missing.py")
        with pytest.raises(SymbolNotFoundError):
            indexer.get_symbol("pkg/a.py:nope:1")

    def test_queries_without_index_raise(self, indexer):
        with pytest.raises(IndexNotFoundError):
            indexer.search_functions("foo")

    def test_find_references(self, indexer, built):
        refs = indexer.find_references("foo")
        assert len(refs) == 1
        assert refs[0].file == "pkg/a.py"
        assert refs[0].context == "Called in run()"

    def test_find_references_in_methods(self, indexer, built):
        refs = indexer.find_references("validate_item")
        assert [r.context for r in refs] == ["Called in Child.handle()"]

    def test_get_file_index_accepts_absolute_paths(self, sample_repo, indexer, built):
        file_index = indexer.get_file_index(sample_repo / "pkg" / "b.py")
        assert file_index.functions == ["pkg/b.py:foo:1"]

    def test_get_parsed_file(self, indexer, sample_repo):
        parsed = indexer.get_parsed_file("pkg/b.py")
        assert parsed is not None
        assert [f.name for f in parsed.functions] == ["foo"]
        (sample_repo / "pkg" / "bad.py").write_text("class (:\n")
        assert indexer.get_parsed_file("pkg/bad.py") is None


class TestUpdateIndex:

    def test_update_without_index_builds(self, indexer):
        index = indexer.update_index(["pkg/a.py"])
        assert index.total_files == 4

    def test_unchanged_update_keeps_counts(self, indexer, built):
        index = indexer.update_index(["pkg/a.py"])
        assert index.total_files == built.total_files
        assert index.total_loc == built.total_loc
        assert set(index.symbols) == set(built.symbols)

    def test_modified_file_replaces_symbols(self, sample_repo, indexer, built):
        (sample_repo / "pkg" / "b.py").write_text("\n\ndef foo(x):\n    return x\n\n\ndef bar():\n    return 1\n")
        index = indexer.update_index(["pkg/b.py"])
        assert "pkg/b.py:foo:1" not in index.symbols
        assert "pkg/b.py:foo:3" in index.symbols
        assert "pkg/b.py:bar:7" in index.symbols
        # the caller's edge follows the moved definition
        assert "pkg/b.py:foo:3" in index.dependencies.dependencies_of("pkg/a.py:run:4")

    def test_deleted_file_is_dropped(self, sample_repo, indexer, built):
        (sample_repo / "pkg" / "models.py").unlink()
        index = indexer.update_index([str(sample_repo / "pkg" / "models.py")])
        assert "pkg/models.py" not in index.files
        assert not [s for s in index.symbols if s.startswith("pkg/models.py:")]
        assert index.total_files == 3
        assert "pkg/models.py" not in index.dependencies.nodes

    def test_new_file_is_added(self, sample_repo, indexer, built):
        (sample_repo / "pkg" / "c.py").write_text("from .a import run\n\n\ndef go():\n    return run(1)\n")
        index = indexer.update_index(["pkg/c.py"])
        assert index.total_files == 5
        assert "pkg/a.py" in index.dependencies.dependencies_of("pkg/c.py")

    def test_paths_outside_root_are_skipped(self, tmp_path, indexer, built, caplog):
        outside = tmp_path / "elsewhere.py"
        outside.write_text("def stray():\n    pass\n")
        with caplog.at_level("WARNING", logger="index.indexer"):
            index = indexer.update_index([str(outside), "../elsewhere.py"])
        assert set(index.files) == set(built.files)
        assert not [s for s in index.symbols if "stray" in s]
        assert index.metadata.languages == {"python": 4}
        assert "outside repository root" in caplog.text

    def test_update_is_persisted(self, sample_repo, indexer, built, cache_dir):
        (sample_repo / "pkg" / "c.py").write_text("def extra():\n    pass\n")
        indexer.update_index(["pkg/c.py"])
        fresh = CodebaseIndexer(sample_repo, "sample", cache_dir=cache_dir)
        assert fresh.load_index().total_files == 5


class TestPersistence:

    def test_index_written_under_repo_id(self, indexer, built, cache_dir):
        assert indexer.index_path == cache_dir / "sample" / "index.json"
        assert indexer.index_path.exists()

    def test_load_round_trips(self, indexer, built):
        loaded = indexer.load_index()
        assert set(loaded.symbols) == set(built.symbols)
        assert loaded.dependencies.to_dict() == built.dependencies.to_dict()

    def test_missing_index_loads_none(self, indexer):
        assert indexer.load_index() is None

    def test_corrupt_index_loads_none(self, indexer, built):
        indexer.index_path.write_text("{not json")
        assert indexer.load_index() is None

    def test_structurally_invalid_index_loads_none(self, indexer, built):
        indexer.index_path.write_text(json.dumps({"version": "1.0.0"}))
        assert indexer.load_index() is None

    def test_clear_cache(self, indexer, built):
        indexer.clear_cache()
        assert not indexer.index_path.exists()
        with pytest.raises(IndexNotFoundError):
            indexer.search_functions("foo")
