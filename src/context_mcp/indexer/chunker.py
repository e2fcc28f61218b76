"""Chunking logic for splitting source files into indexable units."""

import logging
import re

from tree_sitter import Node
from tree_sitter_language_pack import get_parser

from context_mcp.errors import ValidationError
from context_mcp.indexer.languages import LanguageSpec, normalize_language, resolve_language
from context_mcp.indexer.models import Chunk
from context_mcp.indexer.refiner import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, refine

logger = logging.getLogger(__name__)

SPLITTER_TYPES = ("ast", "text")

_BLANK_LINE = re.compile(r"^\s*$")


def split_paragraphs(lines: list[str]) -> list[tuple[int, int]]:
    """
    Group lines into blank-line separated blocks.

    Returns list of (first_index, last_index) pairs, 0-based and inclusive.
    Blank lines are attached to the block they follow.
    """
    blocks: list[tuple[int, int]] = []
    start: int | None = None
    previous_blank = False

    for i, line in enumerate(lines):
        blank = bool(_BLANK_LINE.match(line))
        if start is None:
            if blank:
                continue
            start = i
        elif not blank and previous_blank:
            blocks.append((start, i - 1))
            start = i
        previous_blank = blank

    if start is not None:
        blocks.append((start, len(lines) - 1))

    return blocks


class TextSplitter:
    """Language-agnostic splitter used when no syntax tree is available.

    Consecutive paragraphs are packed into chunks of at most chunk_size
    characters; anything still oversized is re-split on lines by the
    refiner, which also adds the overlap.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def split(self, code: str, language: str, file_path: str | None = None) -> list[Chunk]:
        language = normalize_language(language)
        lines = code.split("\n")
        chunks: list[Chunk] = []
        group_start: int | None = None
        group_end = 0

        def emit(first: int, last: int) -> None:
            content = "\n".join(lines[first : last + 1]).rstrip()
            if content.strip():
                chunks.append(
                    Chunk(
                        content=content,
                        start_line=first + 1,
                        end_line=first + 1 + content.count("\n"),
                        language=language,
                        file_path=file_path,
                    )
                )

        for first, last in split_paragraphs(lines):
            if group_start is None:
                group_start, group_end = first, last
                continue
            candidate = "\n".join(lines[group_start : last + 1])
            if len(candidate) > self.chunk_size:
                emit(group_start, group_end)
                group_start = first
            group_end = last

        if group_start is not None:
            emit(group_start, group_end)

        return refine(chunks, self.chunk_size, self.chunk_overlap)


class AstSplitter:
    """Syntax-aware splitter built on tree-sitter.

    Every node whose type is splittable for the language yields a chunk.
    Traversal always descends into children, so a method inside a class
    produces its own chunk next to the class chunk.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        fallback: TextSplitter | None = None,
    ):
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.fallback = fallback or TextSplitter(chunk_size, chunk_overlap)

    def split(self, code: str, language: str, file_path: str | None = None) -> list[Chunk]:
        """Split code into refined chunks, falling back to the text splitter."""
        resolved = resolve_language(language)
        if resolved is None:
            logger.debug(
                "Language %s not supported by AST splitter, using text splitter for %s",
                language,
                file_path or "unknown",
            )
            return self.fallback.split(code, language, file_path)

        spec, grammar = resolved
        try:
            parser = get_parser(grammar)  # type: ignore[arg-type]
            tree = parser.parse(code.encode("utf-8"))
        except Exception as e:
            logger.warning(
                "AST parse failed for %s (%s), using text splitter: %s",
                file_path or "unknown",
                language,
                e,
            )
            return self.fallback.split(code, language, file_path)

        if tree.root_node is None:
            return self.fallback.split(code, language, file_path)

        chunks = extract_chunks(tree.root_node, code, spec, file_path)
        if not chunks:
            logger.debug("No splittable nodes in %s, using text splitter", file_path or "unknown")
            return self.fallback.split(code, language, file_path)

        return refine(chunks, self.chunk_size, self.chunk_overlap)


def extract_chunks(
    root: Node, code: str, spec: LanguageSpec, file_path: str | None = None
) -> list[Chunk]:
    """Collect one chunk per splittable node in depth-first order."""
    source = code.encode("utf-8")
    splittable = set(spec.splittable)
    chunks: list[Chunk] = []

    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in splittable:
            text = source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")
            if text.strip():
                chunks.append(
                    Chunk(
                        content=text,
                        start_line=node.start_point[0] + 1,
                        end_line=node.end_point[0] + 1,
                        language=spec.name,
                        file_path=file_path,
                        is_definition=spec.is_definition(node.type),
                    )
                )
        # Reversed so children are visited in source order
        stack.extend(reversed(node.children))

    return chunks


def make_splitter(
    splitter_type: str = "ast",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> AstSplitter | TextSplitter:
    """Create a splitter by name ("ast" or "text")."""
    if splitter_type == "ast":
        return AstSplitter(chunk_size, chunk_overlap)
    if splitter_type == "text":
        return TextSplitter(chunk_size, chunk_overlap)
    raise ValidationError(
        f"Invalid splitter type '{splitter_type}'. Must be one of: {', '.join(SPLITTER_TYPES)}"
    )
