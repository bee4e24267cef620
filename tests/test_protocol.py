"""
Unit tests for the marker table, the line classifier and session events.
"""

from types import SimpleNamespace

import pytest

from navtunnel.exceptions import AuthenticationRejected, UnexpectedProcessExit
from navtunnel.session.events import (
    ALLOWED_TRANSITIONS,
    PROMPT_FIELDS,
    STAGE_OTP,
    STAGE_PASSWORD,
    Event,
    EventKind,
    SessionState,
)
from navtunnel.session.protocol import MarkerTable, ProtocolClassifier


@pytest.fixture
def classifier() -> ProtocolClassifier:
    return ProtocolClassifier()


class TestClassifier:
    """Tests for ProtocolClassifier with the default markers."""

    def test_scripted_sequence_order(self, classifier):
        lines = [
            "Fri Oct 17 10:00:00 2026 OpenVPN 2.6.8 x86_64-pc-linux-gnu",
            "Enter Auth Username:",
            "Enter Auth Password:",
            "AUTH: Received control message: AUTH_FAILED",
            "Fri Oct 17 10:00:09 2026 Initialization Sequence Completed",
        ]

        events = [classifier.classify(line, "stdout") for line in lines]

        assert [e.kind for e in events] == [
            EventKind.LOG_LINE,
            EventKind.ASK_USERNAME,
            EventKind.ASK_PASSWORD,
            EventKind.AUTH_FAILED,
            EventKind.CONNECTED,
        ]
        assert events[3].stage == STAGE_PASSWORD

    @pytest.mark.parametrize("line", [
        ">PASSWORD:Need 'Auth' username/password",
        "Need 'Auth' username",
    ])
    def test_management_style_username_prompt(self, classifier, line):
        assert classifier.classify(line).kind is EventKind.ASK_USERNAME

    @pytest.mark.parametrize("line", [
        "CHALLENGE: Enter your one-time code",
        "Enter Challenge Response:",
        ">PASSWORD:Need 'Static Challenge' password",
    ])
    def test_otp_prompt(self, classifier, line):
        assert classifier.classify(line).kind is EventKind.ASK_OTP

    @pytest.mark.parametrize("line", [
        ">PASSWORD:Verification Failed: 'Static Challenge'",
        "AUTH: Received control message: AUTH_FAILED,CRV1:R:abc",
    ])
    def test_otp_failure_stage(self, classifier, line):
        event = classifier.classify(line)
        assert event.kind is EventKind.AUTH_FAILED
        assert event.stage == STAGE_OTP

    def test_password_failure_stage(self, classifier):
        event = classifier.classify(">PASSWORD:Verification Failed: 'Auth'")
        assert event.kind is EventKind.AUTH_FAILED
        assert event.stage == STAGE_PASSWORD

    def test_disconnected_marker(self, classifier):
        event = classifier.classify("SIGTERM[hard,] received, process exiting")
        assert event.kind is EventKind.DISCONNECTED

    def test_event_carries_line_and_stream(self, classifier):
        event = classifier.classify("TUN/TAP device tun0 opened", "stderr")

        assert event.kind is EventKind.LOG_LINE
        assert event.message == "TUN/TAP device tun0 opened"
        assert event.stream == "stderr"

    def test_matching_is_case_sensitive(self, classifier):
        assert classifier.classify("enter auth username").kind is EventKind.LOG_LINE


class TestMarkerTable:
    """Tests for MarkerTable overrides and command formatting."""

    def test_override_changes_classification(self):
        table = MarkerTable.from_dict({"ask_username": ["Login name"]})
        classifier = ProtocolClassifier(table)

        assert classifier.classify("Login name:").kind is EventKind.ASK_USERNAME
        assert classifier.classify("Enter Auth Username:").kind is EventKind.LOG_LINE
        # Other keys keep their defaults.
        assert classifier.classify("Enter Auth Password:").kind is EventKind.ASK_PASSWORD

    def test_string_override_becomes_single_marker(self):
        table = MarkerTable.from_dict({"connected": "Tunnel up"})
        assert table.connected == ("Tunnel up",)

    def test_unknown_keys_ignored(self):
        assert MarkerTable.from_dict({"bogus": ["x"]}) == MarkerTable()

    def test_commands_merge(self):
        table = MarkerTable.from_dict({"commands": {"otp": 'challenge "{value}"'}})

        assert table.format_command("otp", "123456") == 'challenge "123456"'
        assert table.format_command("username", "bob") == 'username "bob"'

    def test_from_settings(self):
        settings = SimpleNamespace(PROTOCOL_MARKERS={"disconnected": ["bye"]})
        assert MarkerTable.from_settings(settings).disconnected == ("bye",)
        assert MarkerTable.from_settings(SimpleNamespace()) == MarkerTable()

    def test_to_dict_round_trip(self):
        table = MarkerTable.from_dict({"ask_otp": ["Token:"]})
        assert MarkerTable.from_dict(table.to_dict()) == table

    def test_format_commands(self):
        table = MarkerTable()

        assert table.format_command("username", "alice") == 'username "alice"'
        assert table.format_command("password", "pw1") == 'password "pw1"'
        assert table.format_command("otp", "123456") == 'otp "123456"'

    def test_format_command_escapes(self):
        command = MarkerTable().format_command("password", 'a"b\\c')
        assert command == 'password "a\\"b\\\\c"'

    def test_format_command_unknown_field(self):
        with pytest.raises(ValueError):
            MarkerTable().format_command("pin", "1234")

    def test_rules_check_failures_first(self):
        kinds = [rule.kind for rule in MarkerTable().rules()]
        assert kinds.index(EventKind.AUTH_FAILED) < kinds.index(EventKind.ASK_PASSWORD)

    def test_prompt_markers_cover_prompts_only(self):
        markers = MarkerTable().prompt_markers()

        assert "Enter Auth Username" in markers
        assert "CHALLENGE:" in markers
        assert "Verification Failed: 'Auth'" not in markers
        assert "Initialization Sequence Completed" not in markers

    def test_prompt_markers_follow_overrides(self):
        table = MarkerTable.from_dict({"ask_username": ["Login name"], "ask_otp": [""]})
        markers = table.prompt_markers()

        assert "Login name" in markers
        assert "Enter Auth Username" not in markers
        assert "" not in markers

    def test_prompt_fields(self):
        assert PROMPT_FIELDS[EventKind.ASK_USERNAME] == "username"
        assert PROMPT_FIELDS[EventKind.ASK_PASSWORD] == STAGE_PASSWORD
        assert PROMPT_FIELDS[EventKind.ASK_OTP] == STAGE_OTP


class TestEvents:
    """Tests for Event and the state transition table."""

    def test_is_prompt(self):
        assert Event(EventKind.ASK_OTP).is_prompt
        assert not Event(EventKind.CONNECTED).is_prompt

    def test_raise_for_auth_failure(self):
        with pytest.raises(AuthenticationRejected) as exc_info:
            Event(EventKind.AUTH_FAILED, "AUTH_FAILED", stage=STAGE_OTP).raise_for_failure()
        assert exc_info.value.stage == STAGE_OTP

    def test_raise_for_fatal(self):
        with pytest.raises(UnexpectedProcessExit):
            Event(EventKind.FATAL, "OpenVPN exited unexpectedly").raise_for_failure()

    def test_no_raise_for_other_events(self):
        Event(EventKind.CONNECTED).raise_for_failure()

    def test_terminal_states_have_no_exits(self):
        for state in SessionState:
            if state.is_terminal:
                assert ALLOWED_TRANSITIONS[state] == frozenset()
            else:
                assert SessionState.FAILED in ALLOWED_TRANSITIONS[state]
                assert SessionState.DISCONNECTED in ALLOWED_TRANSITIONS[state]

    def test_authenticating_may_repeat(self):
        assert SessionState.AUTHENTICATING in ALLOWED_TRANSITIONS[SessionState.AUTHENTICATING]
