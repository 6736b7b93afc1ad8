"""Tests for language extractors and the extractor registry."""

import pytest

from codegraph_search.errors import ExtractionError
from codegraph_search.extractors import (
    Extractor,
    ExtractorRegistry,
    PythonExtractor,
    default_registry,
    language_for_path,
    module_name_for_path,
)
from codegraph_search.models import Extraction


def _entity(extraction: Extraction, qualname: str):
    return next(e for e in extraction.entities if e.qualname == qualname)


def _relations(extraction: Extraction, relation_type: str):
    return {(r.source_name, r.target_name) for r in extraction.relations if r.relation_type == relation_type}


class TestPythonExtractor:
    """Test entity and relation extraction from Python source."""

    def test_module_entity_first(self, sample_python_code: str):
        """The module itself is the first entity and spans the file."""
        extraction = PythonExtractor().extract("pkg/sample.py", sample_python_code)
        module = extraction.entities[0]
        assert module.node_type == "module"
        assert module.qualname == "pkg.sample"
        assert module.name == "sample"
        assert module.docstring == "Sample module for testing."
        assert extraction.language == "python"

    def test_entity_kinds(self, sample_python_code: str):
        """Classes, interfaces, enums, functions, and variables are typed."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        assert _entity(extraction, "hello").node_type == "function"
        assert _entity(extraction, "Calculator").node_type == "class"
        assert _entity(extraction, "Drawable").node_type == "interface"
        assert _entity(extraction, "Color").node_type == "enum"
        assert _entity(extraction, "MAX_ITEMS").node_type == "variable"

    def test_abstract_and_static_flags(self, sample_python_code: str):
        """ABC bases and abstractmethod mark abstract; staticmethod marks static."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        assert _entity(extraction, "Shape").is_abstract
        assert _entity(extraction, "Shape.area").is_abstract
        assert _entity(extraction, "Drawable").is_abstract
        assert not _entity(extraction, "Calculator").is_abstract
        assert _entity(extraction, "Calculator._validate").is_static

    def test_visibility(self, sample_python_code: str):
        """Leading underscores map to protected and private."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        assert _entity(extraction, "Calculator.add").visibility == "public"
        assert _entity(extraction, "Calculator._validate").visibility == "protected"
        assert _entity(extraction, "Calculator.__secret").visibility == "private"

    def test_signature_and_lines(self, sample_python_code: str):
        """Functions carry their signature and line span."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        hello = _entity(extraction, "hello")
        assert hello.signature == "def hello(name: str) -> str"
        assert hello.start_line < hello.end_line
        assert "Hello" in hello.code

    def test_contains_relations(self, sample_python_code: str):
        """Module contains top-level defs; classes contain methods."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        contains = _relations(extraction, "contains")
        assert ("sample", "Calculator") in contains
        assert ("sample", "MAX_ITEMS") in contains
        assert ("Calculator", "Calculator.add") in contains

    def test_self_calls_resolve_to_owner(self, sample_python_code: str):
        """``self.add`` inside Calculator targets ``Calculator.add``."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        calls = _relations(extraction, "calls")
        assert ("Calculator.multiply", "Calculator.add") in calls
        assert ("Calculator.__secret", "hello") in calls

    def test_builtins_are_not_relations(self, sample_python_code: str):
        """Calls to builtins and builtin exceptions produce no relations."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        targets = {r.target_name for r in extraction.relations}
        assert "range" not in targets
        assert "ValueError" not in targets

    def test_marker_bases_are_not_extends(self, sample_python_code: str):
        """ABC, Protocol and Enum are markers, not parents."""
        extraction = PythonExtractor().extract("sample.py", sample_python_code)
        assert _relations(extraction, "extends") == set()

    def test_inheritance_throws_catches(self, sample_project_path):
        """User-defined bases and exceptions become relations."""
        path = sample_project_path / "notifications.py"
        extraction = PythonExtractor().extract("notifications.py", path.read_text())
        assert ("EmailNotifier", "Notifier") in _relations(extraction, "extends")
        assert ("EmailNotifier.send", "DeliveryError") in _relations(extraction, "throws")
        assert ("NotificationService.broadcast", "DeliveryError") in _relations(extraction, "catches")
        assert ("NotificationService.broadcast", "send") in _relations(extraction, "calls")

    def test_relative_imports(self):
        """Relative imports resolve against the package and carry a file hint."""
        code = "from .models import User\nfrom ..core import engine\nimport json\n"
        extraction = PythonExtractor().extract("app/api/views.py", code)
        imports = {r.target_name: r.target_file for r in extraction.relations if r.relation_type == "imports"}
        assert imports["app.api.models"] == "app/api/models.py"
        assert imports["app.core"] == "app/core.py"
        assert imports["json"] == "json.py"

    def test_decorator_relation(self):
        """Custom decorators relate to the decorated function."""
        code = "def traced(fn):\n    return fn\n\n@traced\ndef work():\n    pass\n"
        extraction = PythonExtractor().extract("deco.py", code)
        assert ("traced", "work") in _relations(extraction, "decorates")

    def test_async_function(self):
        """Coroutines are functions with an ``async def`` signature and their own calls."""
        code = "def helper():\n    pass\n\nasync def fetch(url: str) -> bytes:\n    helper()\n    return b''\n"
        extraction = PythonExtractor().extract("net.py", code)
        fetch = _entity(extraction, "fetch")
        assert fetch.node_type == "function"
        assert fetch.signature == "async def fetch(url: str) -> bytes"
        assert ("fetch", "helper") in _relations(extraction, "calls")

    def test_syntax_error(self):
        """Unparseable source raises ExtractionError."""
        with pytest.raises(ExtractionError) as exc_info:
            PythonExtractor().extract("broken.py", "def broken(:\n    pass\n")
        assert exc_info.value.path == "broken.py"

    def test_empty_file(self):
        """An empty file still yields its module entity."""
        extraction = PythonExtractor().extract("empty.py", "")
        assert [e.node_type for e in extraction.entities] == ["module"]
        assert extraction.relations == []


class TestExtractorRegistry:
    """Test extractor lookup and registration."""

    def test_language_for_path(self):
        assert language_for_path("a/b.py") == "python"
        assert language_for_path("web/app.TS") == "typescript"
        assert language_for_path("README.md") is None

    def test_module_name_for_path(self):
        assert module_name_for_path("pkg/sub/mod.py") == "pkg.sub.mod"
        assert module_name_for_path("pkg/__init__.py") == "pkg"
        assert module_name_for_path("main.py") == "main"

    def test_default_registry(self):
        """Python is built in; other languages have no extractor."""
        registry = default_registry()
        assert registry.languages == ["python"]
        assert isinstance(registry.for_path("x.py"), PythonExtractor)
        assert registry.for_path("x.js") is None
        assert registry.for_path("notes.md") is None

    def test_register_custom_extractor(self):
        """New languages plug in without touching the pipeline."""

        class JsExtractor(Extractor):
            language = "javascript"

            def extract(self, path, content):
                return Extraction(path=path, language=self.language, content=content)

        registry = ExtractorRegistry([PythonExtractor()])
        registry.register(JsExtractor())
        assert registry.languages == ["javascript", "python"]
        assert isinstance(registry.for_path("app.jsx"), JsExtractor)

    def test_register_requires_language(self):
        class Nameless(Extractor):
            def extract(self, path, content):
                return Extraction(path=path, language="")

        with pytest.raises(ValueError):
            ExtractorRegistry().register(Nameless())
