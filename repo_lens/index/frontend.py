"""
Language front-ends: turn raw source into ParsedFile records.

The indexer only depends on the ``LanguageFrontend`` interface. The bundled
``PythonFrontend`` uses Python's built-in ast module, so it is always
available without external dependencies.

Relative imports keep their leading dots (``from .util import x`` becomes
``.util``); resolving them to files is the indexer's job.
"""

from __future__ import annotations

import ast
from abc import ABC, abstractmethod
from pathlib import Path

from repo_lens.errors import ParseError
from repo_lens.index.models import Parameter, ParsedClass, ParsedFile, ParsedFunction, Property

# Node types that add one decision point to cyclomatic complexity.
_BRANCH_NODES: tuple[type[ast.AST], ...] = (
    ast.If,
    ast.IfExp,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.ExceptHandler,
    ast.With,
    ast.AsyncWith,
    ast.Assert,
)
if hasattr(ast, "match_case"):
    _BRANCH_NODES = _BRANCH_NODES + (ast.match_case,)


class LanguageFrontend(ABC):
    """
    Abstract base class for language front-ends.

    Implementations report functions, classes, imports, exports and
    complexity for a single source file.
    """

    language: str = "unknown"
    extensions: tuple[str, ...] = ()

    def supports(self, path: Path | str) -> bool:
        """Return True if this front-end handles the file's extension."""
        return Path(path).suffix.lower() in self.extensions

    def parse_file(self, path: Path, rel_path: str | None = None) -> ParsedFile:
        """
        Parse a file from disk.

        Raises:
            ParseError: If the source cannot be parsed
            OSError: If the file cannot be read
        """
        try:
            source = Path(path).read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"{path}: not valid UTF-8 ({exc})") from exc
        return self.parse_source(source, rel_path or str(path))

    @abstractmethod
    def parse_source(self, source: str, rel_path: str) -> ParsedFile:
        """Parse source text; ``rel_path`` is recorded on every record."""


def _name_of(node: ast.AST) -> str | None:
    """Dotted name for Name/Attribute chains (``pkg.mod.Base``)."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        value = _name_of(node.value)
        return f"{value}.{node.attr}" if value else node.attr
    if isinstance(node, ast.Call):
        return _name_of(node.func)
    if isinstance(node, ast.Subscript):
        return _name_of(node.value)
    return None


def _unparse(node: ast.AST | None) -> str:
    if node is None:
        return ""
    try:
        return ast.unparse(node)
    except Exception:  # noqa: BLE001 - unparse is best-effort text
        return ""


def cyclomatic_complexity(node: ast.AST) -> int:
    """1 + number of decision points beneath ``node``."""
    score = 1
    for child in ast.walk(node):
        if isinstance(child, _BRANCH_NODES):
            score += 1
        elif isinstance(child, ast.BoolOp):
            score += len(child.values) - 1
        elif isinstance(child, ast.comprehension):
            score += len(child.ifs)
    return score


def called_names(node: ast.AST) -> list[str]:
    """Names called anywhere under ``node``, de-duplicated in first-seen order."""
    seen: dict[str, None] = {}
    for child in ast.walk(node):
        if not isinstance(child, ast.Call):
            continue
        func = child.func
        if isinstance(func, ast.Name):
            seen.setdefault(func.id, None)
        elif isinstance(func, ast.Attribute):
            seen.setdefault(func.attr, None)
    return list(seen)


def extract_imports(tree: ast.AST) -> list[str]:
    """Imported module names; relative imports keep their leading dots."""
    imports: dict[str, None] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.setdefault(alias.name, None)
        elif isinstance(node, ast.ImportFrom):
            dots = "." * (node.level or 0)
            if node.module:
                imports.setdefault(f"{dots}{node.module}", None)
            elif dots:
                # "from . import a, b" imports sibling modules a and b
                for alias in node.names:
                    imports.setdefault(f"{dots}{alias.name}", None)
    return list(imports)


def _literal_all(tree: ast.Module) -> list[str] | None:
    for node in tree.body:
        if not isinstance(node, ast.Assign):
            continue
        if not any(isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets):
            continue
        if isinstance(node.value, (ast.List, ast.Tuple)):
            names = [elt.value for elt in node.value.elts if isinstance(elt, ast.Constant)]
            return [n for n in names if isinstance(n, str)]
    return None


class PythonFrontend(LanguageFrontend):
    """Front-end for Python source built on the standard ast module."""

    language = "python"
    extensions = (".py", ".pyi")

    def parse_source(self, source: str, rel_path: str) -> ParsedFile:
        try:
            tree = ast.parse(source, filename=rel_path)
        except (SyntaxError, ValueError) as exc:
            raise ParseError(f"{rel_path}: {exc}") from exc

        top_level = [
            node.name
            for node in tree.body
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
        ]
        declared = _literal_all(tree)
        exports = declared if declared is not None else [n for n in top_level if not n.startswith("_")]
        exported = set(exports)

        functions: list[ParsedFunction] = []
        classes: list[ParsedClass] = []
        for node in tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                functions.append(self._function(node, source, rel_path, node.name in exported))
            elif isinstance(node, ast.ClassDef):
                classes.append(self._class(node, source, rel_path, node.name in exported))

        complexity = sum(f.complexity for f in functions)
        complexity += sum(m.complexity for c in classes for m in c.methods)

        return ParsedFile(
            path=rel_path,
            language=self.language,
            functions=functions,
            classes=classes,
            imports=extract_imports(tree),
            exports=exports,
            complexity=complexity,
        )

    def _function(
        self,
        node: ast.FunctionDef | ast.AsyncFunctionDef,
        source: str,
        rel_path: str,
        is_exported: bool,
        is_method: bool = False,
    ) -> ParsedFunction:
        return ParsedFunction(
            name=node.name,
            file=rel_path,
            line=node.lineno,
            end_line=getattr(node, "end_lineno", None) or node.lineno,
            parameters=self._parameters(node.args, is_method),
            return_type=_unparse(node.returns),
            body=ast.get_source_segment(source, node) or "",
            complexity=cyclomatic_complexity(node),
            is_async=isinstance(node, ast.AsyncFunctionDef),
            is_exported=is_exported,
            documentation=ast.get_docstring(node),
            decorators=[_unparse(d) for d in node.decorator_list],
            dependencies=called_names(node),
        )

    def _parameters(self, args: ast.arguments, is_method: bool) -> list[Parameter]:
        params: list[Parameter] = []

        positional = [*args.posonlyargs, *args.args]
        # defaults align with the tail of the positional list
        offset = len(positional) - len(args.defaults)
        for i, arg in enumerate(positional):
            default = args.defaults[i - offset] if i >= offset else None
            params.append(
                Parameter(
                    name=arg.arg,
                    type=_unparse(arg.annotation),
                    optional=default is not None,
                    default_value=_unparse(default) if default is not None else None,
                )
            )
        if is_method and params and params[0].name in ("self", "cls"):
            params = params[1:]

        if args.vararg:
            params.append(Parameter(name=f"*{args.vararg.arg}", type=_unparse(args.vararg.annotation), optional=True))
        for arg, default in zip(args.kwonlyargs, args.kw_defaults):
            params.append(
                Parameter(
                    name=arg.arg,
                    type=_unparse(arg.annotation),
                    optional=default is not None,
                    default_value=_unparse(default) if default is not None else None,
                )
            )
        if args.kwarg:
            params.append(Parameter(name=f"**{args.kwarg.arg}", type=_unparse(args.kwarg.annotation), optional=True))
        return params

    def _class(self, node: ast.ClassDef, source: str, rel_path: str, is_exported: bool) -> ParsedClass:
        bases = [name for name in (_name_of(b) for b in node.bases) if name and name != "object"]
        methods = [
            self._function(child, source, rel_path, is_exported, is_method=True)
            for child in node.body
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef))
        ]
        metaclass = next((_name_of(k.value) for k in node.keywords if k.arg == "metaclass"), None)
        is_abstract = (
            any(b.split(".")[-1] == "ABC" for b in bases)
            or (metaclass or "").endswith("ABCMeta")
            or any("abstractmethod" in d for m in methods for d in m.decorators)
        )
        return ParsedClass(
            name=node.name,
            file=rel_path,
            line=node.lineno,
            end_line=getattr(node, "end_lineno", None) or node.lineno,
            is_exported=is_exported,
            is_abstract=is_abstract,
            extends=bases,
            properties=self._properties(node),
            methods=methods,
            documentation=ast.get_docstring(node),
        )

    def _properties(self, node: ast.ClassDef) -> list[Property]:
        found: dict[str, Property] = {}

        for child in node.body:
            if isinstance(child, ast.AnnAssign) and isinstance(child.target, ast.Name):
                found.setdefault(child.target.id, Property(name=child.target.id, type=_unparse(child.annotation)))
            elif isinstance(child, ast.Assign):
                for target in child.targets:
                    if isinstance(target, ast.Name):
                        found.setdefault(target.id, Property(name=target.id, is_static=True))

        init = next(
            (c for c in node.body if isinstance(c, ast.FunctionDef) and c.name == "__init__"),
            None,
        )
        if init is not None:
            for child in ast.walk(init):
                if isinstance(child, ast.AnnAssign):
                    targets, annotation = [child.target], _unparse(child.annotation)
                elif isinstance(child, ast.Assign):
                    targets, annotation = child.targets, ""
                else:
                    continue
                for target in targets:
                    if (
                        isinstance(target, ast.Attribute)
                        and isinstance(target.value, ast.Name)
                        and target.value.id == "self"
                    ):
                        found.setdefault(target.attr, Property(name=target.attr, type=annotation))

        return list(found.values())


def get_frontend(path: Path | str, frontends: list[LanguageFrontend]) -> LanguageFrontend | None:
    """Return the first front-end that supports ``path``."""
    for frontend in frontends:
        if frontend.supports(path):
            return frontend
    return None
