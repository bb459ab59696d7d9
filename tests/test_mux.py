"""Tests for command routing and alias resolution."""

import pytest

from tbot.conversation import ConversationStore
from tbot.exceptions import RegistrationError
from tbot.message import extract_command
from tbot.model import FileUpload, InboundEvent
from tbot.mux import DefaultMux


def _event(text="", chat_id=42, file=None):
    return InboundEvent(chat_id=chat_id, text=text, file=file)


def _upload():
    return FileUpload(file_id="f-1", kind="document", file_name="report.pdf")


async def greet(message):
    pass


async def fallback(message):
    pass


async def on_file(message):
    pass


# -------------------------------------------------------------------
# Command extraction
# -------------------------------------------------------------------

class TestExtractCommand:
    """Tests for extract_command."""

    def test_first_token_and_args(self):
        assert extract_command("/say hello world") == ("/say", "hello world")

    def test_surrounding_whitespace_ignored(self):
        assert extract_command("   /start  ") == ("/start", "")

    def test_blank_text(self):
        assert extract_command("") == ("", "")
        assert extract_command(" \n\t ") == ("", "")

    def test_botname_suffix_stripped(self):
        assert extract_command("/start@my_bot now") == ("/start", "now")

    def test_case_preserved(self):
        assert extract_command("/Start") == ("/Start", "")

    def test_multiline_args(self):
        assert extract_command("/note line one\nline two") == (
            "/note", "line one\nline two",
        )


# -------------------------------------------------------------------
# Resolution
# -------------------------------------------------------------------

class TestResolve:
    """Tests for DefaultMux.resolve."""

    def test_exact_match(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        assert mux.resolve(_event("/start")) is greet

    def test_exact_match_with_args(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        assert mux.resolve(_event("/start now please")) is greet

    def test_matching_is_case_sensitive(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        assert mux.resolve(_event("/START")) is fallback

    def test_no_prefix_matching(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        assert mux.resolve(_event("/starting")) is fallback
        assert mux.resolve(_event("/sta")) is fallback

    def test_unknown_goes_to_default(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        assert mux.resolve(_event("/unknown")) is fallback

    def test_empty_text_goes_to_default(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        assert mux.resolve(_event("")) is fallback
        assert mux.resolve(_event("   ")) is fallback

    def test_plain_text_goes_to_default(self):
        mux = DefaultMux()
        mux.handle_default(fallback)
        assert mux.resolve(_event("hello there")) is fallback

    def test_unresolved_without_default_is_none(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        assert mux.resolve(_event("/unknown")) is None

    def test_alias_resolves_to_route(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.set_alias("/start", "/go")
        assert mux.resolve(_event("/go", chat_id=42)) is greet

    def test_many_aliases_one_route(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.set_alias("/start", "/go", "/begin", "go")
        for text in ("/go", "/begin", "go"):
            assert mux.resolve(_event(text)) is greet

    def test_exact_match_wins_over_alias(self):
        async def other(message):
            pass

        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_func("/go", other)
        mux.set_alias("/start", "/go")
        assert mux.resolve(_event("/go")) is other

    def test_alias_to_unregistered_route_falls_to_default(self):
        mux = DefaultMux()
        mux.handle_default(fallback)
        mux.set_alias("/later", "/l")
        assert mux.resolve(_event("/l")) is fallback

    def test_alias_registered_before_route(self):
        mux = DefaultMux()
        mux.set_alias("/start", "/go")
        mux.handle_func("/start", greet)
        assert mux.resolve(_event("/go")) is greet

    def test_alias_after_route_removed_falls_to_default(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        mux.set_alias("/start", "/go")
        assert mux.remove("/start") is True
        assert mux.resolve(_event("/go")) is fallback
        assert mux.resolve(_event("/start")) is fallback

    def test_alias_after_route_removed_without_default(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.set_alias("/start", "/go")
        mux.remove("/start")
        assert mux.resolve(_event("/go")) is None

    def test_remove_unknown_route(self):
        assert DefaultMux().remove("/nothing") is False

    def test_file_event_uses_file_handler(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        mux.handle_file(on_file)
        assert mux.resolve(_event("/start", file=_upload())) is on_file
        assert mux.resolve(_event("", file=_upload())) is on_file

    def test_file_event_without_file_handler_goes_to_default(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_default(fallback)
        assert mux.resolve(_event("/start", file=_upload())) is fallback

    def test_file_event_without_any_handler(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        assert mux.resolve(_event("/start", file=_upload())) is None

    def test_botname_suffix_matches_route(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        assert mux.resolve(_event("/start@my_bot")) is greet


# -------------------------------------------------------------------
# Registration
# -------------------------------------------------------------------

class TestRegistration:
    """Tests for handler/alias registration rules."""

    def test_reregistration_replaces_handler(self):
        async def second(message):
            pass

        mux = DefaultMux()
        mux.handle_func("/start", greet, "first")
        mux.handle_func("/start", second, "second")
        assert mux.resolve(_event("/start")) is second
        routes = mux.routes()
        assert len(routes) == 1
        assert routes[0].description == "second"

    def test_default_replaced(self):
        async def second(message):
            pass

        mux = DefaultMux()
        mux.handle_default(fallback)
        mux.handle_default(second, "new default")
        assert mux.resolve(_event("/x")) is second
        assert mux.default_route.description == "new default"

    def test_file_handler_replaced(self):
        async def second(message):
            pass

        mux = DefaultMux()
        mux.handle_file(on_file)
        mux.handle_file(second)
        assert mux.resolve(_event(file=_upload())) is second

    @pytest.mark.parametrize("path", ["", " ", "/two words", " /lead", None, 5])
    def test_invalid_path_rejected(self, path):
        with pytest.raises(RegistrationError):
            DefaultMux().handle_func(path, greet)

    def test_non_callable_handler_rejected(self):
        mux = DefaultMux()
        with pytest.raises(RegistrationError):
            mux.handle_func("/start", None)
        with pytest.raises(RegistrationError):
            mux.handle_func("/start", "not a function")
        with pytest.raises(RegistrationError):
            mux.handle_default(None)
        with pytest.raises(RegistrationError):
            mux.handle_file(42)

    def test_registration_error_carries_path(self):
        with pytest.raises(RegistrationError) as exc_info:
            DefaultMux().handle_func("/a b", greet)
        assert exc_info.value.path == "/a b"

    def test_aliasing_an_alias_rejected(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.set_alias("/start", "/go")
        with pytest.raises(RegistrationError, match="alias"):
            mux.set_alias("/go", "/g")

    def test_alias_that_is_already_a_target_rejected(self):
        mux = DefaultMux()
        mux.set_alias("/b", "/c")
        with pytest.raises(RegistrationError):
            mux.set_alias("/a", "/b")

    def test_alias_equal_to_route_rejected(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        with pytest.raises(RegistrationError):
            mux.set_alias("/start", "/start")

    def test_invalid_alias_rejected_without_partial_registration(self):
        mux = DefaultMux()
        mux.handle_func("/start", greet)
        with pytest.raises(RegistrationError):
            mux.set_alias("/start", "/go", "bad alias")
        assert mux.aliases() == {}

    def test_alias_overwrite_last_write_wins(self):
        async def help_handler(message):
            pass

        mux = DefaultMux()
        mux.handle_func("/start", greet)
        mux.handle_func("/help", help_handler)
        mux.set_alias("/start", "/s")
        mux.set_alias("/help", "/s")
        assert mux.aliases() == {"/s": "/help"}
        assert mux.resolve(_event("/s")) is help_handler

    def test_routes_sorted(self):
        mux = DefaultMux()
        for path in ("/zeta", "/alpha", "/mid"):
            mux.handle_func(path, greet)
        assert [r.path for r in mux.routes()] == ["/alpha", "/mid", "/zeta"]

    def test_aliases_returns_copy(self):
        mux = DefaultMux()
        mux.set_alias("/start", "/go")
        mux.aliases()["/x"] = "/y"
        assert mux.aliases() == {"/go": "/start"}

    def test_independent_instances(self):
        first = DefaultMux()
        second = DefaultMux()
        first.handle_func("/start", greet)
        assert second.resolve(_event("/start")) is None
        assert first.conversations is not second.conversations


# -------------------------------------------------------------------
# Reset
# -------------------------------------------------------------------

class TestReset:
    """Tests for conversation reset through the mux."""

    def test_reset_clears_chat_state(self):
        mux = DefaultMux()
        mux.conversations.set(42, "step", 2)
        mux.conversations.set(7, "step", 1)
        mux.reset(42)
        assert 42 not in mux.conversations
        assert mux.conversations.get(7, "step") == 1

    def test_reset_is_idempotent(self):
        mux = DefaultMux()
        mux.conversations.set(42, "step", 2)
        mux.reset(42)
        mux.reset(42)
        assert 42 not in mux.conversations

    def test_reset_unknown_chat_is_noop(self):
        mux = DefaultMux()
        mux.reset(999)
        assert len(mux.conversations) == 0

    def test_injected_empty_store_is_used(self):
        store = ConversationStore()
        mux = DefaultMux(conversations=store)
        assert mux.conversations is store
        store.set(42, "step", 1)
        mux.reset(42)
        assert 42 not in store
