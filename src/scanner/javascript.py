"""
JavaScript / TypeScript / Vue scanner using tree-sitter.

Extracts:
- Classes (name, superclass, members)
- Methods (class methods and arrow-function class fields)
- Standalone functions (declarations and single arrow/function constants)
- Documentation comments attached to each of the above

Offsets are byte offsets into the file. For .vue files everything outside
the first <script> block is blanked, so offsets and line numbers still refer
to the original file.
"""

import re
from typing import Optional

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser

from .base import BaseScanner, ParseError, ParsedClass, ParsedFile, ParsedMethod, compute_hash
from .doc_tags import parse_doc_comment

DEFAULT_DOC_LOOKBACK = 500

# What may sit between a doc comment and the declaration it documents
_MODIFIER_GAP = re.compile(
    r"^\s*((export|default|static|async|declare|abstract|public|private|protected"
    r"|readonly|override)\s+)*$"
)
_VUE_SCRIPT = re.compile(r"<script\b([^>]*)>(.*?)</script\s*>", re.DOTALL | re.IGNORECASE)
_VUE_LANG_TS = re.compile(r"""\blang\s*=\s*["']?(ts|tsx)\b""", re.IGNORECASE)

_CLASS_TYPES = ("class_declaration", "abstract_class_declaration")
_FUNCTION_TYPES = ("function_declaration", "generator_function_declaration")
_FUNCTION_VALUE_TYPES = ("arrow_function", "function_expression", "function")
_FIELD_TYPES = ("field_definition", "public_field_definition")
_NAME_TYPES = ("property_identifier", "private_property_identifier", "identifier", "string")

_GRAMMARS = {
    "javascript": tree_sitter_javascript.language,
    "typescript": tree_sitter_typescript.language_typescript,
    "tsx": tree_sitter_typescript.language_tsx,
}


def blank_outside_vue_script(content: str) -> tuple[str, Optional[str]]:
    """
    Keep only the first <script> block of a Vue SFC.

    Returns (blanked content, grammar name) or ("", None) when there is no
    script block. Every character outside the block becomes spaces of the
    same UTF-8 width; newlines are kept.
    """
    match = _VUE_SCRIPT.search(content)
    if not match:
        return "", None

    grammar = "typescript" if _VUE_LANG_TS.search(match.group(1)) else "javascript"
    start, end = match.start(2), match.end(2)

    def blank(text: str) -> str:
        return "".join(
            ch if ch in "\r\n" else " " * len(ch.encode("utf-8"))
            for ch in text
        )

    return blank(content[:start]) + content[start:end] + blank(content[end:]), grammar


def _text(node: Optional[Node]) -> str:
    return node.text.decode("utf-8") if node is not None else ""


def _has_child(node: Node, child_type: str) -> bool:
    return any(child.type == child_type for child in node.children)


def _first_error(node: Node) -> Optional[Node]:
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing:
            found = _first_error(child)
            if found is not None:
                return found
    return None


class JavaScriptScanner(BaseScanner):
    """
    Structural parser for the JavaScript family

    Grammar per extension:
    - .js .cjs .mjs .jsx -> javascript
    - .ts                -> typescript
    - .tsx               -> tsx
    - .vue               -> script block, lang="ts" selects typescript
    """

    supported_extensions = [".js", ".cjs", ".mjs", ".jsx", ".ts", ".tsx", ".vue"]

    def __init__(self, doc_lookback: int = DEFAULT_DOC_LOOKBACK):
        self.doc_lookback = doc_lookback
        self._parsers: dict[str, Parser] = {}

    def _parser(self, grammar: str) -> Parser:
        parser = self._parsers.get(grammar)
        if parser is None:
            parser = Parser(Language(_GRAMMARS[grammar]()))
            self._parsers[grammar] = parser
        return parser

    @staticmethod
    def grammar_for(suffix: str) -> str:
        if suffix == ".ts":
            return "typescript"
        if suffix == ".tsx":
            return "tsx"
        return "javascript"

    def scan_source(self, source: str, suffix: str, path: str = "<source>") -> ParsedFile:
        content_hash = compute_hash(source)
        if suffix == ".vue":
            source, grammar = blank_outside_vue_script(source)
            if grammar is None:
                return ParsedFile(path=path, source=b"", content_hash=content_hash)
        else:
            grammar = self.grammar_for(suffix)

        data = source.encode("utf-8")
        tree = self._parser(grammar).parse(data)
        root = tree.root_node
        if root.has_error:
            error = _first_error(root)
            line = error.start_point[0] + 1 if error is not None else None
            raise ParseError("syntax error", path=path, line=line)

        walker = _TreeWalker(data, self.doc_lookback)
        parsed = ParsedFile(path=path, source=data, content_hash=content_hash)
        for node in root.named_children:
            walker.visit_top_level(node, parsed)
        return parsed


class _TreeWalker:
    """Turns a clean syntax tree into ParsedClass / ParsedMethod records."""

    def __init__(self, data: bytes, doc_lookback: int):
        self.data = data
        self.doc_lookback = doc_lookback

    def visit_top_level(self, node: Node, parsed: ParsedFile):
        anchor = node
        exported = False
        if node.type == "export_statement":
            declaration = node.child_by_field_name("declaration")
            if declaration is None:
                # export default <named function or class expression>
                declaration = node.child_by_field_name("value")
                if declaration is None or declaration.child_by_field_name("name") is None:
                    return
            node, exported = declaration, True

        if node.type in _CLASS_TYPES or node.type == "class":
            parsed.classes.append(self._class(node, anchor, exported))
        elif node.type in _FUNCTION_TYPES or node.type in ("function_expression", "function"):
            function = self._function(node, anchor, exported)
            if function is not None:
                parsed.functions.append(function)
        elif node.type in ("lexical_declaration", "variable_declaration"):
            function = self._function_constant(node, anchor, exported)
            if function is not None:
                parsed.functions.append(function)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def _gap(self, start: int, end: int) -> str:
        return self.data[start:end].decode("utf-8", errors="replace")

    def doc_comment_for(self, anchor: Node) -> Optional[str]:
        """
        Closest /** */ comment before the anchor, if only whitespace and
        modifier keywords separate them and it lies within the lookback window.
        """
        window_start = max(0, anchor.start_byte - self.doc_lookback)
        candidate = anchor.prev_sibling
        while candidate is not None and candidate.type != "comment":
            if candidate.end_byte <= window_start:
                return None
            candidate = candidate.prev_sibling
        if candidate is None or candidate.start_byte < window_start:
            return None
        comment = _text(candidate)
        if not comment.startswith("/**"):
            return None
        if not _MODIFIER_GAP.match(self._gap(candidate.end_byte, anchor.start_byte)):
            return None
        return comment

    def leading_comments_start(self, anchor: Node) -> int:
        """Start of the run of comments directly above the anchor (no blank line between)."""
        start = anchor.start_byte
        sibling = anchor.prev_sibling
        while sibling is not None and sibling.type == "comment":
            gap = self._gap(sibling.end_byte, start)
            if gap.strip() or gap.count("\n") > 1:
                break
            start = sibling.start_byte
            sibling = sibling.prev_sibling
        return start

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _superclass(self, node: Node) -> Optional[str]:
        for child in node.children:
            if child.type != "class_heritage":
                continue
            for part in child.named_children:
                if part.type == "extends_clause":
                    value = part.child_by_field_name("value")
                    return _text(value if value is not None else part.named_children[0])
                if part.type not in ("implements_clause", "comment"):
                    return _text(part)
        return None

    def _class(self, node: Node, anchor: Node, exported: bool) -> ParsedClass:
        name = _text(node.child_by_field_name("name"))
        parsed = ParsedClass(
            name=name,
            superclass=self._superclass(node),
            is_exported=exported,
            start=anchor.start_byte,
            end=anchor.end_byte,
            code_start=self.leading_comments_start(anchor),
            line=anchor.start_point[0] + 1,
            end_line=anchor.end_point[0] + 1,
            doc=parse_doc_comment(self.doc_comment_for(anchor)),
        )

        body = node.child_by_field_name("body")
        seen = set()
        for member in body.named_children if body is not None else []:
            method = self._member(member, name)
            if method is None or method.name in seen:
                continue
            seen.add(method.name)
            parsed.methods.append(method)
        return parsed

    def _member_name(self, member: Node) -> Optional[tuple[str, bool]]:
        name_node = member.child_by_field_name("name") or member.child_by_field_name("property")
        if name_node is None or name_node.type not in _NAME_TYPES:
            return None
        name = _text(name_node)
        if name_node.type == "string":
            name = name[1:-1]
        is_private = name_node.type == "private_property_identifier" or name.startswith("#")
        for child in member.children:
            if child.type == "accessibility_modifier" and _text(child) == "private":
                is_private = True
        return name.lstrip("#"), is_private

    def _member(self, member: Node, class_name: str) -> Optional[ParsedMethod]:
        if member.type == "method_definition":
            function = member
            is_arrow = False
        elif member.type in _FIELD_TYPES:
            function = member.child_by_field_name("value")
            if function is None or function.type not in _FUNCTION_VALUE_TYPES:
                return None
            is_arrow = function.type == "arrow_function"
        else:
            return None

        named = self._member_name(member)
        if named is None:
            return None
        name, is_private = named
        if name == "constructor" and member.type == "method_definition":
            return None

        method = self._method(
            name=name,
            function=function,
            anchor=member,
            class_name=class_name,
        )
        method.is_static = _has_child(member, "static")
        method.is_private = is_private
        method.is_async = _has_child(function, "async")
        method.is_arrow = is_arrow
        return method

    def _function(self, node: Node, anchor: Node, exported: bool) -> Optional[ParsedMethod]:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        method = self._method(name=_text(name_node), function=node, anchor=anchor)
        method.is_async = _has_child(node, "async")
        method.is_exported = exported
        return method

    def _function_constant(self, node: Node, anchor: Node, exported: bool) -> Optional[ParsedMethod]:
        declarators = [c for c in node.named_children if c.type == "variable_declarator"]
        if len(declarators) != 1:
            return None
        name_node = declarators[0].child_by_field_name("name")
        value = declarators[0].child_by_field_name("value")
        if name_node is None or name_node.type != "identifier":
            return None
        if value is None or value.type not in _FUNCTION_VALUE_TYPES:
            return None
        method = self._method(name=_text(name_node), function=value, anchor=anchor)
        method.is_async = _has_child(value, "async")
        method.is_arrow = value.type == "arrow_function"
        method.is_exported = exported
        return method

    def _params(self, function: Node) -> list[str]:
        single = function.child_by_field_name("parameter")
        if single is not None:
            return [_text(single)]
        params = function.child_by_field_name("parameters")
        if params is None:
            return []
        return [_text(p) for p in params.named_children if p.type != "comment"]

    def _method(
        self,
        name: str,
        function: Node,
        anchor: Node,
        class_name: Optional[str] = None,
    ) -> ParsedMethod:
        body = function.child_by_field_name("body")
        body_text = _text(body)
        return ParsedMethod(
            name=name,
            class_name=class_name,
            params=self._params(function),
            start=anchor.start_byte,
            end=anchor.end_byte,
            code_start=self.leading_comments_start(anchor),
            body_start=body.start_byte if body is not None else anchor.end_byte,
            body_end=body.end_byte if body is not None else anchor.end_byte,
            line=anchor.start_point[0] + 1,
            end_line=anchor.end_point[0] + 1,
            body=body_text,
            body_hash=compute_hash(body_text),
            doc=parse_doc_comment(self.doc_comment_for(anchor)),
        )
