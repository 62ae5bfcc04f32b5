"""Tests for the frame codec."""

import json

import pytest

from py_machine.frames import (
    SHELL_OWNER,
    FrameError,
    FrameTag,
    cmd_frame,
    decode_frame,
    echo_frame,
    encode_frame,
    exit_frame,
    set_app_frame,
)


class TestBuilders:
    """Verify outbound frame construction."""

    def test_echo_frame(self) -> None:
        """Echo frames carry one line of text."""
        assert echo_frame("hello") == ["echo", "hello"]

    @pytest.mark.parametrize("error", [None, 0, ""])
    def test_exit_frame_success(self, error: str | int | None) -> None:
        """Any empty error becomes 0."""
        assert exit_frame(error) == ["exit", 0]

    def test_exit_frame_error(self) -> None:
        """A non-empty error is carried verbatim."""
        assert exit_frame("Error: RAM is full, program exit.") == ["exit", "Error: RAM is full, program exit."]

    def test_set_app_frame(self) -> None:
        """set_app frames carry the new owner id."""
        assert set_app_frame("abc") == ["set_app", "abc"]

    def test_cmd_frame_for_shell(self) -> None:
        """The shell is addressed as owner 0."""
        assert cmd_frame(SHELL_OWNER, "hi") == ["cmd", 0, "hi"]

    def test_encode_is_json_array(self) -> None:
        """Encoded frames are plain JSON arrays."""
        assert json.loads(encode_frame(echo_frame("x"))) == ["echo", "x"]


class TestDecode:
    """Verify inbound frame validation."""

    def test_decode_text(self) -> None:
        """JSON text decodes to a list."""
        assert decode_frame('["cmd", 0, "hi --name Ann"]') == ["cmd", 0, "hi --name Ann"]

    def test_decode_bytes(self) -> None:
        """Raw bytes are accepted too."""
        assert decode_frame(b'["exit", 0]') == ["exit", 0]

    def test_decode_list(self) -> None:
        """Already-parsed lists are validated, not re-parsed."""
        assert decode_frame(["cmd", "owner-1", "line"]) == ["cmd", "owner-1", "line"]

    def test_tag_is_plain_string(self) -> None:
        """The decoded tag compares equal to the enum member."""
        frame = decode_frame(["echo", "x"])
        assert frame[0] == FrameTag.ECHO

    @pytest.mark.parametrize(
        ("raw", "match"),
        [
            ("not json", "not valid JSON"),
            ('{"cmd": 0}', "non-empty array"),
            ("[]", "non-empty array"),
            ('["bogus", 1]', "Unknown frame tag"),
            ('["cmd", 0]', "expects 2"),
            ('["echo", "a", "b"]', "expects 1"),
            ('["cmd", 0, 5]', "text must be a string"),
            ('["cmd", true, "hi"]', "owner must be an id"),
            ('["cmd", null, "hi"]', "owner must be an id"),
        ],
    )
    def test_malformed_frames(self, raw: str, match: str) -> None:
        """Malformed frames raise FrameError with a useful message."""
        with pytest.raises(FrameError, match=match):
            decode_frame(raw)

    def test_frame_error_is_value_error(self) -> None:
        """Callers can catch frame errors as ValueError."""
        with pytest.raises(ValueError):  # noqa: PT011
            decode_frame("[")
