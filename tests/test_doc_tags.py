"""Tests for documentation comment tag parsing."""

from cartograph.scanner.doc_tags import clean_comment, parse_doc_comment


class TestCleanComment:
    """Test comment delimiter stripping."""

    def test_strips_gutters(self):
        raw = "/**\n * First line\n * Second line\n */"
        assert clean_comment(raw) == "First line\nSecond line"

    def test_crlf_normalized(self):
        raw = "/**\r\n * Line\r\n */"
        assert clean_comment(raw) == "Line"


class TestParseDocComment:
    """Test tag extraction."""

    def test_empty_returns_none(self):
        assert parse_doc_comment(None) is None
        assert parse_doc_comment("") is None

    def test_description_only(self):
        doc = parse_doc_comment("/** Builds the orb. */")
        assert doc.description == "Builds the orb."
        assert doc.role is None

    def test_description_before_first_tag(self):
        doc = parse_doc_comment("/**\n * Builds the orb.\n * @role core\n */")
        assert doc.description == "Builds the orb."
        assert doc.role == "core"

    def test_no_description_when_tag_first(self):
        doc = parse_doc_comment("/** @role entry */")
        assert doc.description is None
        assert doc.role == "entry"

    def test_role_case_insensitive_with_colon(self):
        doc = parse_doc_comment("/** @Role: Service */")
        assert doc.role == "service"

    def test_unknown_role_ignored(self):
        doc = parse_doc_comment("/** @role wizard */")
        assert doc.role is None

    def test_consumers_split_on_commas_and_spaces(self):
        doc = parse_doc_comment("/**\n * @consumer Galaxy, Nebula Star\n */")
        assert doc.consumers == ["Galaxy", "Nebula", "Star"]

    def test_effects_accumulate_per_kind(self):
        raw = """/**
         * @effect creates: Orb
         * @effect mutates this.speed
         * @effect creates Vertex, Edge
         */"""
        doc = parse_doc_comment(raw)
        assert doc.effects == {
            "creates": ["Orb", "Vertex", "Edge"],
            "mutates": ["this.speed"],
        }

    def test_context_requires_and_provides(self):
        raw = """/**
         * @context requires: seed, config
         * @context provides orb
         */"""
        doc = parse_doc_comment(raw)
        assert doc.requires == ["seed", "config"]
        assert doc.provides == ["orb"]

    def test_raw_kept(self):
        raw = "/** Hello */"
        assert parse_doc_comment(raw).raw == raw
