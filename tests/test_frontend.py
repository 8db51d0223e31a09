"""Tests for index.frontend: Python source parsing."""

import ast

import pytest

from repo_lens.errors import ParseError
from repo_lens.index.frontend import (
    PythonFrontend,
    called_names,
    cyclomatic_complexity,
    extract_imports,
    get_frontend,
)

SOURCE = '''\
"""Module doc."""
import os
from . import sibling
from ..pkg.util import helper

__all__ = ["Service", "run"]


class Service(Base, metaclass=ABCMeta):
    """Does work."""

    retries: int = 3
    name = "svc"

    def __init__(self, client, *, timeout: float = 1.0):
        self.client = client
        self.timeout: float = timeout

    async def fetch(self, key: str) -> bytes:
        return await self.client.get(key)


def run(items, limit=10, *args, **kwargs):
    total = 0
    for item in items:
        if item and item.ok:
            total += helper(item)
    return total


def _private():
    pass
'''


@pytest.fixture
def parsed():
    return PythonFrontend().parse_source(SOURCE, "svc/service.py")


class TestPythonFrontend:

    def test_records_path_and_language(self, parsed):
        assert parsed.path == "svc/service.py"
        assert parsed.language == "python"

    def test_top_level_functions_only(self, parsed):
        assert [f.name for f in parsed.functions] == ["run", "_private"]

    def test_exports_follow_dunder_all(self, parsed):
        assert parsed.exports == ["Service", "run"]
        run, private = parsed.functions
        assert run.is_exported
        assert not private.is_exported

    def test_exports_default_to_public_names(self):
        parsed = PythonFrontend().parse_source("def a():\n    pass\n\ndef _b():\n    pass\n", "m.py")
        assert parsed.exports == ["a"]

    def test_parameters_and_defaults(self, parsed):
        run = parsed.functions[0]
        names = [p.name for p in run.parameters]
        assert names == ["items", "limit", "*args", "**kwargs"]
        limit = run.parameters[1]
        assert limit.optional
        assert limit.default_value == "10"

    def test_method_parameters_drop_self(self, parsed):
        init = parsed.classes[0].methods[0]
        assert [p.name for p in init.parameters] == ["client", "timeout"]
        assert init.parameters[1].type == "float"

    def test_async_method(self, parsed):
        fetch = parsed.classes[0].methods[1]
        assert fetch.is_async
        assert fetch.return_type == "bytes"

    def test_class_shape(self, parsed):
        cls = parsed.classes[0]
        assert cls.name == "Service"
        assert cls.extends == ["Base"]
        assert cls.is_abstract
        assert cls.documentation == "Does work."
        props = {p.name: p for p in cls.properties}
        assert set(props) == {"retries", "name", "client", "timeout"}
        assert props["retries"].type == "int"
        assert props["name"].is_static

    def test_dependencies_are_called_names(self, parsed):
        assert parsed.functions[0].dependencies == ["helper"]

    def test_imports_keep_relative_dots(self, parsed):
        assert parsed.imports == ["os", ".sibling", "..pkg.util"]

    def test_body_is_source_segment(self, parsed):
        run = parsed.functions[0]
        assert run.body.startswith("def run(items")
        assert run.end_line > run.line

    def test_syntax_error_raises_parse_error(self):
        with pytest.raises(ParseError):
            PythonFrontend().parse_source("def broken(:\n", "bad.py")


class TestComplexity:

    def test_straight_line_is_one(self):
        tree = ast.parse("def f():\n    return 1\n")
        assert cyclomatic_complexity(tree.body[0]) == 1

    def test_branches_and_bool_ops(self):
        tree = ast.parse(
            "def f(a, b):\n"
            "    if a and b:\n"
            "        return 1\n"
            "    for x in a:\n"
            "        pass\n"
            "    return 0\n"
        )
        # if + and + for
        assert cyclomatic_complexity(tree.body[0]) == 4

    def test_file_complexity_sums_functions_and_methods(self, parsed):
        expected = sum(f.complexity for f in parsed.functions)
        expected += sum(m.complexity for c in parsed.classes for m in c.methods)
        assert parsed.complexity == expected


class TestHelpers:

    def test_called_names_dedupes(self):
        tree = ast.parse("a()\nb.c()\na()\n")
        assert called_names(tree) == ["a", "c"]

    def test_extract_imports_from_dot(self):
        tree = ast.parse("from . import a, b\n")
        assert extract_imports(tree) == [".a", ".b"]

    def test_get_frontend_by_extension(self):
        py = PythonFrontend()
        assert get_frontend("x/y.py", [py]) is py
        assert get_frontend("x/y.pyi", [py]) is py
        assert get_frontend("x/y.ts", [py]) is None
