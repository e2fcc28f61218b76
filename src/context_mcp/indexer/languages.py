"""Per-language syntax node tables used by the AST splitter.

Each language maps to the tree-sitter node types that become chunks
("splittable") and the narrower subset that names a declaration
("definitions"). Definition chunks get a ranking bonus at query time.
"""

import logging
from dataclasses import dataclass

from tree_sitter_language_pack import get_language

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LanguageSpec:
    """Static chunking configuration for one language."""

    name: str
    grammars: tuple[str, ...]  # Candidate grammar names, first available wins
    splittable: tuple[str, ...]
    definitions: frozenset[str]

    def is_definition(self, node_type: str) -> bool:
        return node_type in self.definitions


LANGUAGES: dict[str, LanguageSpec] = {
    spec.name: spec
    for spec in (
        LanguageSpec(
            name="javascript",
            grammars=("javascript",),
            splittable=(
                "function_declaration",
                "arrow_function",
                "class_declaration",
                "method_definition",
                "export_statement",
            ),
            definitions=frozenset(
                {"function_declaration", "class_declaration", "method_definition"}
            ),
        ),
        LanguageSpec(
            name="typescript",
            grammars=("typescript",),
            splittable=(
                "function_declaration",
                "arrow_function",
                "class_declaration",
                "method_definition",
                "export_statement",
                "interface_declaration",
                "type_alias_declaration",
            ),
            definitions=frozenset(
                {
                    "function_declaration",
                    "class_declaration",
                    "method_definition",
                    "interface_declaration",
                    "type_alias_declaration",
                }
            ),
        ),
        LanguageSpec(
            name="python",
            grammars=("python",),
            splittable=(
                "function_definition",
                "class_definition",
                "decorated_definition",
                "async_function_definition",
            ),
            definitions=frozenset(
                {"function_definition", "class_definition", "async_function_definition"}
            ),
        ),
        LanguageSpec(
            name="java",
            grammars=("java",),
            splittable=(
                "method_declaration",
                "class_declaration",
                "interface_declaration",
                "constructor_declaration",
                "annotation_type_declaration",
            ),
            definitions=frozenset(
                {
                    "method_declaration",
                    "class_declaration",
                    "interface_declaration",
                    "constructor_declaration",
                }
            ),
        ),
        LanguageSpec(
            name="cpp",
            grammars=("cpp",),
            splittable=(
                "function_definition",
                "class_specifier",
                "namespace_definition",
                "declaration",
                "template_declaration",
            ),
            definitions=frozenset({"function_definition", "class_specifier"}),
        ),
        LanguageSpec(
            name="c",
            grammars=("c", "cpp"),
            splittable=(
                "function_definition",
                "struct_specifier",
                "enum_specifier",
                "declaration",
            ),
            definitions=frozenset({"function_definition", "struct_specifier"}),
        ),
        LanguageSpec(
            name="go",
            grammars=("go",),
            splittable=(
                "function_declaration",
                "method_declaration",
                "type_declaration",
                "var_declaration",
                "const_declaration",
            ),
            definitions=frozenset(
                {"function_declaration", "method_declaration", "type_declaration"}
            ),
        ),
        LanguageSpec(
            name="rust",
            grammars=("rust",),
            splittable=(
                "function_item",
                "impl_item",
                "struct_item",
                "enum_item",
                "trait_item",
                "mod_item",
                "macro_definition",
            ),
            definitions=frozenset(
                {"function_item", "struct_item", "enum_item", "trait_item"}
            ),
        ),
        LanguageSpec(
            name="csharp",
            grammars=("csharp", "c_sharp"),
            splittable=(
                "method_declaration",
                "class_declaration",
                "interface_declaration",
                "struct_declaration",
                "enum_declaration",
                "delegate_declaration",
            ),
            definitions=frozenset(
                {
                    "method_declaration",
                    "class_declaration",
                    "interface_declaration",
                    "struct_declaration",
                }
            ),
        ),
        LanguageSpec(
            name="scala",
            grammars=("scala",),
            splittable=(
                "function_definition",
                "class_definition",
                "object_definition",
                "trait_definition",
            ),
            definitions=frozenset(
                {"function_definition", "class_definition", "trait_definition"}
            ),
        ),
        LanguageSpec(
            name="dart",
            grammars=("dart",),
            splittable=(
                "class_definition",
                "enum_declaration",
                "mixin_declaration",
                "extension_declaration",
                "method_signature",
                "function_signature",
                "getter_signature",
                "setter_signature",
                "constructor_signature",
            ),
            definitions=frozenset(
                {
                    "class_definition",
                    "enum_declaration",
                    "mixin_declaration",
                    "function_signature",
                    "method_signature",
                }
            ),
        ),
    )
}

ALIASES: dict[str, str] = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "c++": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "h": "c",
    "rs": "rust",
    "cs": "csharp",
    "c#": "csharp",
}

# File extension -> language id, used when indexing files from disk
EXTENSION_LANGUAGES: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".java": "java",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".cs": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".php": "php",
    ".rb": "ruby",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".dart": "dart",
    ".m": "objective-c",
    ".mm": "objective-c",
    ".md": "markdown",
    ".markdown": "markdown",
    ".ipynb": "jupyter",
}

# Grammar resolved for each language after validation (None = unavailable)
_resolved_grammars: dict[str, str | None] | None = None


def normalize_language(language: str) -> str:
    """Map an alias such as "js" to its canonical language id."""
    key = language.strip().lower()
    return ALIASES.get(key, key)


def language_for_extension(extension: str) -> str:
    """Return the language id for a file extension, or "text"."""
    return EXTENSION_LANGUAGES.get(extension.lower(), "text")


def validate_languages(force: bool = False) -> dict[str, str | None]:
    """Check every language table against the installed grammars.

    Languages whose grammar cannot be loaded are disabled and routed to
    the text splitter. The result is computed once per process.
    """
    global _resolved_grammars
    if _resolved_grammars is not None and not force:
        return _resolved_grammars

    resolved: dict[str, str | None] = {}
    for name, spec in LANGUAGES.items():
        resolved[name] = None
        for grammar in spec.grammars:
            try:
                get_language(grammar)  # type: ignore[arg-type]
            except Exception as e:
                logger.debug("Grammar %s unavailable for %s: %s", grammar, name, e)
                continue
            resolved[name] = grammar
            break
        if resolved[name] is None:
            logger.warning(
                "No tree-sitter grammar available for %s, AST splitting disabled", name
            )

    _resolved_grammars = resolved
    return resolved


def resolve_language(language: str) -> tuple[LanguageSpec, str] | None:
    """Return the language table and grammar name, or None for the fallback."""
    name = normalize_language(language)
    spec = LANGUAGES.get(name)
    if spec is None:
        return None
    grammar = validate_languages().get(name)
    if grammar is None:
        return None
    return spec, grammar


def is_language_supported(language: str) -> bool:
    """Check whether AST splitting is available for a language or alias."""
    return resolve_language(language) is not None
