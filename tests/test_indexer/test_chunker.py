"""Tests for the AST and text splitters."""

import pytest

from context_mcp.errors import ValidationError
from context_mcp.indexer.chunker import (
    AstSplitter,
    TextSplitter,
    make_splitter,
    split_paragraphs,
)
from context_mcp.indexer.languages import (
    is_language_supported,
    language_for_extension,
    normalize_language,
    validate_languages,
)

FUNCTION = "def add(a, b):\n    total = a + b\n    return total"

CLASS_WITH_METHOD = '''class Greeter:
    """Says hello."""

    def hello(self, name):
        return f"hello {name}"
'''


class TestLanguages:
    def test_aliases(self):
        assert normalize_language("js") == "javascript"
        assert normalize_language("TS") == "typescript"
        assert normalize_language("py") == "python"
        assert normalize_language("c++") == "cpp"
        assert normalize_language("rust") == "rust"

    def test_extension_lookup(self):
        assert language_for_extension(".py") == "python"
        assert language_for_extension(".TSX") == "typescript"
        assert language_for_extension(".unknown") == "text"

    def test_validation_resolves_python(self):
        resolved = validate_languages(force=True)
        assert resolved["python"] == "python"

    def test_supported(self):
        assert is_language_supported("py")
        assert not is_language_supported("cobol")


class TestSplitParagraphs:
    def test_blank_lines_attach_to_previous_block(self):
        lines = ["a", "b", "", "c", "", "", "d"]
        assert split_paragraphs(lines) == [(0, 2), (3, 5), (6, 6)]

    def test_leading_blank_lines_skipped(self):
        assert split_paragraphs(["", "", "x"]) == [(2, 2)]

    def test_empty(self):
        assert split_paragraphs([]) == []


class TestTextSplitter:
    def test_packs_paragraphs_up_to_size(self):
        code = "aaaa\nbbbb\n\ncccc\ndddd\n\neeee"
        chunks = TextSplitter(chunk_size=20, chunk_overlap=0).split(code, "text")

        assert [c.content for c in chunks] == ["aaaa\nbbbb", "cccc\ndddd\n\neeee"]
        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 2), (4, 7)]

    def test_small_file_is_one_chunk(self):
        chunks = TextSplitter().split("hello\nworld\n", "markdown", "README.md")
        assert len(chunks) == 1
        assert chunks[0].content == "hello\nworld"
        assert chunks[0].language == "markdown"
        assert chunks[0].file_path == "README.md"
        assert not chunks[0].is_definition

    def test_blank_file_has_no_chunks(self):
        assert TextSplitter().split("\n\n  \n", "text") == []

    def test_oversized_paragraph_is_refined(self):
        code = "\n".join("line %03d" % i for i in range(100))
        chunks = TextSplitter(chunk_size=100, chunk_overlap=0).split(code, "text")
        assert len(chunks) > 1
        assert all(len(c.content) <= 100 for c in chunks)


class TestAstSplitter:
    def test_function_is_one_chunk(self):
        chunks = AstSplitter().split(FUNCTION, "python", "math.py")

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.content == FUNCTION
        assert (chunk.start_line, chunk.end_line) == (1, 3)
        assert chunk.is_definition
        assert chunk.language == "python"
        assert chunk.file_path == "math.py"

    def test_nested_method_gets_own_chunk(self):
        chunks = AstSplitter(chunk_overlap=0).split(CLASS_WITH_METHOD, "py")

        assert len(chunks) == 2
        outer, inner = chunks
        assert outer.content.startswith("class Greeter")
        assert (outer.start_line, outer.end_line) == (1, 5)
        assert inner.content.startswith("def hello")
        assert (inner.start_line, inner.end_line) == (4, 5)
        assert outer.is_definition and inner.is_definition

    def test_decorated_function(self):
        code = "@cache\ndef compute():\n    return 42\n"
        chunks = AstSplitter(chunk_overlap=0).split(code, "python")

        assert [c.content.splitlines()[0] for c in chunks] == ["@cache", "def compute():"]
        assert not chunks[0].is_definition
        assert chunks[1].is_definition

    def test_javascript_alias(self):
        code = "function greet(name) {\n  return 'hi ' + name;\n}\n"
        chunks = AstSplitter().split(code, "js")
        assert len(chunks) == 1
        assert chunks[0].language == "javascript"
        assert chunks[0].is_definition

    def test_unknown_language_falls_back(self):
        code = "some words\n\nmore words"
        chunks = AstSplitter().split(code, "cobol")
        assert len(chunks) == 1
        assert chunks[0].content == code
        assert chunks[0].language == "cobol"

    def test_no_splittable_nodes_falls_back(self):
        code = "x = 1\ny = 2\n"
        chunks = AstSplitter().split(code, "python")
        assert len(chunks) == 1
        assert chunks[0].content == "x = 1\ny = 2"
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)
        assert not chunks[0].is_definition

    def test_chunks_are_refined(self):
        body = "\n".join(f"    value_{i} = {i}" for i in range(300))
        code = f"def big():\n{body}\n"
        chunks = AstSplitter(chunk_size=500, chunk_overlap=50).split(code, "python")

        assert len(chunks) > 1
        assert all(len(c.content) <= 550 for c in chunks)
        assert all(c.has_overlap for c in chunks[1:])


class TestMakeSplitter:
    def test_known_types(self):
        assert isinstance(make_splitter("ast"), AstSplitter)
        assert isinstance(make_splitter("text"), TextSplitter)

    def test_invalid_type(self):
        with pytest.raises(ValidationError, match="Invalid splitter type"):
            make_splitter("langchain")
