"""Language extractors: source text in, id-free entities and symbolic relations out.

Extractors never assign node ids.  They name things by their scope-qualified
name inside the file (``DataProcessor.process``) and leave the binding of
relation endpoints to :class:`~codegraph_search.graph.GraphBuilder`.

Only Python ships built in, parsed with the standard ``ast`` module.  Other
languages plug in through :class:`ExtractorRegistry`.
"""

from __future__ import annotations

import ast
import builtins
import logging
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Set, Union

from .errors import ExtractionError
from .models import Extraction, ExtractedEntity, ExtractedRelation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping (extensible)
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".jsx": "javascript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".cpp": "cpp",
    ".c": "c",
    ".cs": "c_sharp",
}

_BUILTIN_NAMES: Set[str] = set(dir(builtins))

_IGNORED_DECORATORS: Set[str] = {
    "staticmethod", "classmethod", "property", "abstractmethod",
    "setter", "getter", "deleter", "wraps", "dataclass", "overload",
}

_INTERFACE_BASES: Set[str] = {"Protocol"}
_ENUM_BASES: Set[str] = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
_ABSTRACT_BASES: Set[str] = {"ABC"}
_MARKER_BASES: Set[str] = _INTERFACE_BASES | _ENUM_BASES | _ABSTRACT_BASES | {"object", "Generic"}


def language_for_path(path: str) -> Optional[str]:
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower())


# ===================================================================
# Abstract Extractor Interface
# ===================================================================

class Extractor(ABC):
    """Turns one file into an :class:`~codegraph_search.models.Extraction`."""

    language: str = ""

    @abstractmethod
    def extract(self, path: str, content: str) -> Extraction:
        """Parse *content* of the file at relative *path*.

        Raises:
            ExtractionError: the file cannot be parsed.
        """
        ...


class ExtractorRegistry:
    """Extractors keyed by language id."""

    def __init__(self, extractors: Iterable[Extractor] = ()) -> None:
        self._by_language: Dict[str, Extractor] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: Extractor) -> None:
        if not extractor.language:
            raise ValueError(f"{type(extractor).__name__} does not declare a language")
        self._by_language[extractor.language] = extractor

    def get(self, language: str) -> Optional[Extractor]:
        return self._by_language.get(language)

    def for_path(self, path: str) -> Optional[Extractor]:
        language = language_for_path(path)
        return self._by_language.get(language) if language else None

    @property
    def languages(self) -> List[str]:
        return sorted(self._by_language)


def default_registry() -> ExtractorRegistry:
    return ExtractorRegistry([PythonExtractor()])


# ===================================================================
# Python extractor (stdlib ast)
# ===================================================================

def module_name_for_path(path: str) -> str:
    """``pkg/sub/mod.py`` -> ``pkg.sub.mod``; ``pkg/__init__.py`` -> ``pkg``."""
    parts = list(PurePosixPath(path).with_suffix("").parts)
    if len(parts) > 1 and parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts)


def _module_path_hint(module: str) -> str:
    return module.replace(".", "/") + ".py"


def _visibility(name: str) -> str:
    if name.startswith("__") and not name.endswith("__"):
        return "private"
    if name.startswith("_") and not name.startswith("__"):
        return "protected"
    return "public"


def _last_segment(dotted: str) -> str:
    return dotted.rsplit(".", 1)[-1]


class PythonExtractor(Extractor):
    """Python extractor built on the standard ``ast`` module.

    Emits the module, classes (``ABC`` / ``abstractmethod`` mark abstract
    classes, ``Protocol`` bases make interfaces, ``Enum`` bases make enums),
    functions and methods, and module-level variables, plus ``contains``,
    ``extends``, ``imports``, ``calls``, ``decorates``, ``throws`` and
    ``catches`` relations.
    """

    language = "python"

    def extract(self, path: str, content: str) -> Extraction:
        try:
            tree = ast.parse(content, filename=path)
        except (SyntaxError, ValueError) as exc:
            raise ExtractionError(f"Cannot parse {path}: {exc}", path=path, language=self.language) from exc

        module_name = module_name_for_path(path)
        lines = content.splitlines()
        module = ExtractedEntity(
            name=_last_segment(module_name) or module_name,
            qualname=module_name,
            node_type="module",
            start_line=1,
            end_line=max(len(lines), 1),
            signature=f"module {module_name}",
            namespace=module_name,
            code=content,
            docstring=ast.get_docstring(tree) or "",
        )
        visitor = _PythonVisitor(path, module_name, lines)
        visitor.visit(tree)
        visitor.relations.extend(_module_imports(tree, path, module_name))
        return Extraction(
            path=path,
            language=self.language,
            content=content,
            entities=[module] + visitor.entities,
            relations=visitor.relations,
        )


def _module_imports(tree: ast.Module, path: str, module_name: str) -> List[ExtractedRelation]:
    relations: List[ExtractedRelation] = []
    is_package = PurePosixPath(path).name == "__init__.py"
    package = module_name.split(".") if is_package else module_name.split(".")[:-1]
    seen: Set[str] = set()
    for stmt in ast.walk(tree):
        targets: List[str] = []
        if isinstance(stmt, ast.Import):
            targets = [alias.name for alias in stmt.names]
        elif isinstance(stmt, ast.ImportFrom):
            if stmt.level:
                base = package[: len(package) - (stmt.level - 1)] if stmt.level > 1 else package
                prefix = ".".join(base)
                if stmt.module:
                    targets = [f"{prefix}.{stmt.module}" if prefix else stmt.module]
                else:
                    targets = [f"{prefix}.{alias.name}" if prefix else alias.name for alias in stmt.names]
            elif stmt.module:
                targets = [stmt.module]
        for target in targets:
            if target in seen or target == module_name:
                continue
            seen.add(target)
            relations.append(ExtractedRelation(
                source_name=module_name,
                target_name=target,
                relation_type="imports",
                target_file=_module_path_hint(target),
            ))
    return relations


class _PythonVisitor(ast.NodeVisitor):
    """Walks a module collecting entities and scope-aware relations."""

    def __init__(self, path: str, module_name: str, lines: List[str]) -> None:
        self.path = path
        self.module_name = module_name
        self.lines = lines
        self.scope: List[str] = []
        self.class_stack: List[Optional[str]] = []
        self.entities: List[ExtractedEntity] = []
        self.relations: List[ExtractedRelation] = []

    # -- helpers ---------------------------------------------------------

    def _qualname(self, name: str) -> str:
        return ".".join(self.scope + [name])

    def _parent(self) -> str:
        return ".".join(self.scope) if self.scope else self.module_name

    def _snippet(self, node: ast.AST) -> str:
        start = max(getattr(node, "lineno", 1) - 1, 0)
        end = getattr(node, "end_lineno", None) or start + 1
        return "\n".join(self.lines[start:end])

    def _relate(self, source: str, target: Optional[str], relation_type: str) -> None:
        if not target or target in _BUILTIN_NAMES:
            return
        self.relations.append(ExtractedRelation(
            source_name=source, target_name=target, relation_type=relation_type,
        ))

    def _decorators(self, node: ast.AST, qualname: str) -> List[str]:
        names: List[str] = []
        for deco in getattr(node, "decorator_list", []):
            dotted = _name_from_expr(deco)
            if not dotted:
                continue
            names.append(_last_segment(dotted))
            if _last_segment(dotted) not in _IGNORED_DECORATORS:
                self._relate(_last_segment(dotted), qualname, "decorates")
        return names

    # -- visitors --------------------------------------------------------

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        qualname = self._qualname(node.name)
        bases = [b for b in (_name_from_expr(expr) for expr in node.bases) if b]
        base_names = {_last_segment(b) for b in bases}
        metaclass = next(
            (_name_from_expr(kw.value) for kw in node.keywords if kw.arg == "metaclass"), None,
        )
        has_abstract_methods = any(
            isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef))
            and any(_last_segment(_name_from_expr(d) or "") == "abstractmethod" for d in stmt.decorator_list)
            for stmt in node.body
        )
        if base_names & _INTERFACE_BASES:
            node_type = "interface"
        elif base_names & _ENUM_BASES:
            node_type = "enum"
        else:
            node_type = "class"
        is_abstract = node_type == "interface" or bool(base_names & _ABSTRACT_BASES) or (
            metaclass is not None and _last_segment(metaclass) == "ABCMeta"
        ) or has_abstract_methods

        self.entities.append(ExtractedEntity(
            name=node.name,
            qualname=qualname,
            node_type=node_type,
            start_line=node.lineno,
            end_line=getattr(node, "end_lineno", node.lineno),
            signature=f"class {node.name}({', '.join(bases)})" if bases else f"class {node.name}",
            visibility=_visibility(node.name),
            is_abstract=is_abstract,
            namespace=self.module_name,
            code=self._snippet(node),
            docstring=ast.get_docstring(node) or "",
        ))
        self._relate(self._parent(), qualname, "contains")
        self._decorators(node, qualname)
        for base in bases:
            if _last_segment(base) not in _MARKER_BASES:
                self._relate(qualname, _last_segment(base), "extends")

        self.scope.append(node.name)
        self.class_stack.append(qualname)
        self.generic_visit(node)
        self.class_stack.pop()
        self.scope.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_function(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_function(node)

    def _visit_function(self, node: Union[ast.FunctionDef, ast.AsyncFunctionDef]) -> None:
        qualname = self._qualname(node.name)
        decorators = self._decorators(node, qualname)
        prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
        returns = f" -> {ast.unparse(node.returns)}" if node.returns is not None else ""
        self.entities.append(ExtractedEntity(
            name=node.name,
            qualname=qualname,
            node_type="function",
            start_line=node.lineno,
            end_line=getattr(node, "end_lineno", node.lineno),
            signature=f"{prefix} {node.name}({ast.unparse(node.args)}){returns}",
            visibility=_visibility(node.name),
            is_abstract="abstractmethod" in decorators,
            is_static="staticmethod" in decorators,
            namespace=self.module_name,
            code=self._snippet(node),
            docstring=ast.get_docstring(node) or "",
        ))
        self._relate(self._parent(), qualname, "contains")

        owner = self.class_stack[-1] if self.class_stack else None
        body = _BodyScanner()
        for stmt in node.body:
            body.visit(stmt)
        for call in body.calls:
            self._relate(qualname, _call_target(call, owner), "calls")
        for exc_name in body.raised:
            self._relate(qualname, _last_segment(exc_name), "throws")
        for exc_name in body.caught:
            self._relate(qualname, _last_segment(exc_name), "catches")

        self.scope.append(node.name)
        self.class_stack.append(None)
        for stmt in node.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                self.visit(stmt)
        self.class_stack.pop()
        self.scope.pop()

    def visit_Assign(self, node: ast.Assign) -> None:
        if self.scope:
            return
        for target in node.targets:
            if isinstance(target, ast.Name):
                self._variable(target.id, node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        if not self.scope and isinstance(node.target, ast.Name):
            self._variable(node.target.id, node)

    def _variable(self, name: str, node: ast.AST) -> None:
        self.entities.append(ExtractedEntity(
            name=name,
            qualname=name,
            node_type="variable",
            start_line=node.lineno,
            end_line=getattr(node, "end_lineno", node.lineno),
            signature=(self._snippet(node).splitlines() or [name])[0],
            visibility=_visibility(name),
            namespace=self.module_name,
            code=self._snippet(node),
        ))
        self._relate(self.module_name, name, "contains")


class _BodyScanner(ast.NodeVisitor):
    """Collects calls, raises, and handlers without entering nested scopes."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.raised: List[str] = []
        self.caught: List[str] = []

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        return None

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        return None

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        return None

    def visit_Call(self, node: ast.Call) -> None:
        name = _name_from_expr(node.func)
        if name:
            self.calls.append(name)
        self.generic_visit(node)

    def visit_Raise(self, node: ast.Raise) -> None:
        if node.exc is not None:
            name = _name_from_expr(node.exc)
            if name:
                self.raised.append(name)
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is not None:
            exprs = node.type.elts if isinstance(node.type, ast.Tuple) else [node.type]
            for expr in exprs:
                name = _name_from_expr(expr)
                if name:
                    self.caught.append(name)
        self.generic_visit(node)


def _call_target(dotted: str, owner: Optional[str]) -> str:
    """``self.m`` inside class ``C`` -> ``C.m``; ``obj.m`` -> ``m``."""
    parts = dotted.split(".")
    if len(parts) == 2 and parts[0] in ("self", "cls") and owner:
        return f"{owner}.{parts[-1]}"
    return parts[-1]


def _name_from_expr(expr: ast.AST) -> Optional[str]:
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        parts: List[str] = []
        current: ast.AST = expr
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
        return ".".join(reversed(parts)) if parts else None
    if isinstance(expr, ast.Call):
        return _name_from_expr(expr.func)
    if isinstance(expr, ast.Subscript):
        return _name_from_expr(expr.value)
    return None
