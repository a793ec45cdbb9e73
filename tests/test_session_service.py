import re

from chatbridge.services.session_service import (
    DISPLAY_NAME_PLACEHOLDER,
    SessionState,
    VisitorContext,
    extract_display_name,
    generate_session_id,
    is_valid_session_id,
    new_anonymous_context,
    set_name,
    slugify,
    validate_session_id,
)

GRAMMAR = re.compile(r"^chat[_-]([a-z0-9-]+)_([a-f0-9]{6})$")


class TestGenerateSessionId:
    def test_named_id_matches_grammar(self):
        session_id = generate_session_id("Juan Pérez")
        assert GRAMMAR.match(session_id)
        assert session_id.startswith("chat_juan-p-rez_")

    def test_without_name_uses_default_slug(self):
        assert generate_session_id().startswith("chat_default_")
        assert generate_session_id(None).startswith("chat_default_")

    def test_name_without_alphanumerics_uses_visitor_slug(self):
        assert generate_session_id("!!! ???").startswith("chat_visitor_")

    def test_ids_are_unique(self):
        ids = {generate_session_id("Ana") for _ in range(200)}
        assert len(ids) == 200

    def test_slugify_collapses_and_trims(self):
        assert slugify("  --Mary   Jane--  ") == "mary-jane"
        assert slugify("") == ""


class TestExtractDisplayName:
    def test_round_trip_from_name(self):
        assert extract_display_name(generate_session_id("juan perez")) == "Juan Perez"

    def test_hyphen_runs_become_single_space(self):
        assert extract_display_name("chat_mary--jane_abcdef") == "Mary Jane"

    def test_dash_separator_is_accepted(self):
        assert extract_display_name("chat-juan_a1b2c3") == "Juan"

    def test_invalid_id_returns_placeholder(self):
        assert extract_display_name("not-a-session") == DISPLAY_NAME_PLACEHOLDER
        assert extract_display_name("chat_juan_XYZ123") == DISPLAY_NAME_PLACEHOLDER
        assert extract_display_name("") == DISPLAY_NAME_PLACEHOLDER
        assert extract_display_name(None) == DISPLAY_NAME_PLACEHOLDER


class TestValidation:
    def test_valid_ids(self):
        assert is_valid_session_id("chat_juan_a1b2c3")
        assert is_valid_session_id("chat-juan_a1b2c3")
        assert is_valid_session_id("chat_default_000000")

    def test_invalid_ids(self):
        assert not is_valid_session_id("chat_Juan_a1b2c3")
        assert not is_valid_session_id("chat_juan_a1b2c")
        assert not is_valid_session_id("session_juan_a1b2c3")
        assert not is_valid_session_id(None)

    def test_validate_session_id_trims(self):
        result = validate_session_id("  chat_juan_a1b2c3 ")
        assert result.ok
        assert result.value == "chat_juan_a1b2c3"

    def test_validate_session_id_failure_kind(self):
        result = validate_session_id("bogus")
        assert not result.ok
        assert result.error_code == "validation_error"


class TestSetName:
    def test_anonymous_context(self):
        context = new_anonymous_context(ip_address="203.0.113.1")
        assert context.state == SessionState.ANONYMOUS
        assert context.session_id.startswith("chat_default_")
        assert context.display_name == "Default"

    def test_set_name_issues_new_id(self):
        context = new_anonymous_context()
        result = set_name(context, "  <b>Ana</b> María ")

        assert result.ok
        named = result.value
        assert named.state == SessionState.NAMED
        assert named.declared_name == "Ana María"
        assert named.session_id != context.session_id
        assert named.session_id.startswith("chat_ana-mar-a_")

    def test_set_name_twice_gives_fresh_ids(self):
        context = new_anonymous_context()
        first = set_name(context, "Ana").value
        second = set_name(first, "Ana").value
        assert first.session_id != second.session_id

    def test_empty_name_rejected(self):
        result = set_name(new_anonymous_context(), "   ")
        assert not result.ok
        assert result.error_code == "validation_error"

    def test_sender_meta(self):
        context = VisitorContext(session_id="chat_juan_a1b2c3", declared_name="Juan", ip_address="1.2.3.4")
        meta = context.sender_meta()
        assert meta["ip"] == "1.2.3.4"
        assert meta["name"] == "Juan"
        assert meta["page"] == ""
