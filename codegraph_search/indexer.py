"""Ingest pipeline: discover files, extract in parallel, build, index, publish.

A rebuild either completes and publishes a new graph snapshot, or fails and
leaves the previous snapshot serving.  Every indexed document carries the
``graph_version`` of the snapshot it was built from; the index is replaced
first and that snapshot is published right after, and queries keep only the
hits whose version matches the snapshot they rank against.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

from .backends import IndexDocument
from .config import Settings
from .embeddings import EmbeddingProvider, get_embedder
from .errors import ExtractionError
from .extractors import LANGUAGE_MAP, ExtractorRegistry, default_registry, language_for_path
from .graph import CodeGraph, GraphBuilder, SnapshotStore
from .models import BuildReport, Extraction, FileRecord, Node
from .patterns import PatternRegistry
from .similarity import SimilarityAdapter

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs",
    "egg-info", ".codegraph-search", "lancedb",
}

TEXT_EXTENSIONS: Set[str] = {".md", ".rst", ".txt", ".toml", ".yaml", ".yml", ".cfg", ".ini"}

MAX_FILE_BYTES = 1_000_000


def discover_files(root: Path, extensions: Optional[Set[str]] = None) -> List[FileRecord]:
    """Read indexable files under *root*, skipping vendored and build dirs.

    Returns ``(relative_posix_path, content)`` pairs sorted by path.
    """
    wanted = extensions if extensions is not None else set(LANGUAGE_MAP) | TEXT_EXTENSIONS
    records: List[FileRecord] = []
    for fp in sorted(root.rglob("*")):
        if not fp.is_file() or fp.suffix.lower() not in wanted:
            continue
        rel = fp.relative_to(root)
        if any(part in SKIP_DIRS or part.endswith(".egg-info") for part in rel.parts[:-1]):
            continue
        try:
            if fp.stat().st_size > MAX_FILE_BYTES:
                logger.debug("Skipping large file %s", rel)
                continue
            content = fp.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Cannot read %s: %s", fp, exc)
            continue
        records.append((rel.as_posix(), content))
    return records


@dataclass
class _ExtractOutcome:
    path: str
    content: str
    extraction: Optional[Extraction] = None
    error: Optional[str] = None
    unsupported: bool = False


def node_document(node: Node, graph_version: int = 0) -> IndexDocument:
    return IndexDocument(
        id=node.node_id,
        content=node.code or node.signature or node.display_name,
        identifier=node.display_name,
        file_path=node.file_path,
        node_type=node.node_type,
        language=node.language,
        name=node.name,
        metadata={
            "qualname": node.display_name,
            "signature": node.signature,
            "namespace": node.namespace,
            "visibility": node.visibility,
            "start_line": node.start_line,
            "end_line": node.end_line,
            "graph_version": graph_version,
        },
    )


def file_document(path: str, content: str, graph_version: int = 0) -> IndexDocument:
    return IndexDocument(
        id=f"file:{path}",
        content=content,
        identifier=path,
        file_path=path,
        node_type="file",
        language=language_for_path(path) or "",
        name=Path(path).name,
        metadata={"qualname": path, "graph_version": graph_version},
    )


def _embedding_text(doc: IndexDocument) -> str:
    return f"{doc.node_type} {doc.identifier}\n{doc.content}"


class CodeIndexer:
    """Rebuilds the graph snapshot and the search index from source files."""

    def __init__(
        self,
        adapter: SimilarityAdapter,
        store: SnapshotStore,
        settings: Optional[Settings] = None,
        embedder: Optional[EmbeddingProvider] = None,
        registry: Optional[ExtractorRegistry] = None,
        pattern_registry: Optional[PatternRegistry] = None,
    ) -> None:
        self.adapter = adapter
        self.store = store
        self.settings = settings or Settings()
        self.embedder = embedder or get_embedder(self.settings.search.embedding_dim)
        self.registry = registry or default_registry()
        self.pattern_registry = pattern_registry
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract_one(self, record: FileRecord) -> _ExtractOutcome:
        path, content = record
        extractor = self.registry.for_path(path)
        if extractor is None:
            return _ExtractOutcome(path, content, unsupported=True)
        try:
            return _ExtractOutcome(path, content, extraction=extractor.extract(path, content))
        except ExtractionError as exc:
            logger.warning("Extraction failed for %s: %s", path, exc)
            return _ExtractOutcome(path, content, error=str(exc))
        except Exception as exc:
            logger.warning("Extractor %s crashed on %s: %s", type(extractor).__name__, path, exc)
            return _ExtractOutcome(path, content, error=f"{type(exc).__name__}: {exc}")

    def extract_all(self, files: Sequence[FileRecord]) -> List[_ExtractOutcome]:
        """Parallel extraction; results come back in input order."""
        workers = max(1, self.settings.search.max_workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self._extract_one, files))

    def build_graph(self, outcomes: Sequence[_ExtractOutcome]) -> Tuple[CodeGraph, GraphBuilder]:
        builder = GraphBuilder(self.settings.graph, self.pattern_registry)
        for outcome in outcomes:
            if outcome.extraction is not None:
                builder.add_extraction(outcome.extraction)
        return builder.build(), builder

    def embed_documents(self, docs: List[IndexDocument]) -> List[IndexDocument]:
        for doc in docs:
            doc.vector = self.embedder.embed_text(_embedding_text(doc))
        return docs

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    async def rebuild(self, files: Sequence[FileRecord]) -> BuildReport:
        """Full rebuild from *files*; publishes a new snapshot on success."""
        async with self._lock:
            report = BuildReport()
            outcomes = await asyncio.to_thread(self.extract_all, list(files))
            for outcome in outcomes:
                if outcome.error is not None:
                    report.files_failed.append(outcome.path)
                elif outcome.unsupported:
                    report.files_skipped.append(outcome.path)
                else:
                    report.files_processed += 1

            graph, builder = await asyncio.to_thread(self.build_graph, outcomes)
            report.dropped_relations = list(builder.dropped)

            version = self.store.version + 1
            docs = [node_document(node, version) for node in graph.nodes.values()]
            docs.extend(file_document(o.path, o.content, version) for o in outcomes if o.unsupported)
            docs = await asyncio.to_thread(self.embed_documents, docs)

            await self.adapter.initialize()
            await self.adapter.replace_documents(docs)
            published = self.store.publish(graph, version)

            logger.info(
                "Indexed %d files (%d failed, %d without extractor) into snapshot v%d: %d documents",
                report.files_processed, len(report.files_failed), len(report.files_skipped),
                published.version, len(docs),
            )
            return report

    async def rebuild_from_path(self, root: Path) -> BuildReport:
        files = await asyncio.to_thread(discover_files, root)
        logger.info("Discovered %d files under %s", len(files), root)
        return await self.rebuild(files)
