"""Frame codec — the messages exchanged between a client and the machine.

A frame is a JSON array whose first element is a tag::

    ["cmd", 0, "hi --name Ann"]   client → machine (0 addresses the shell)
    ["echo", "Hello, Ann!"]        machine → client
    ["set_app", "3f2b..."]         machine → client (route input to this owner)
    ["exit", 0]                    machine → client (0 means success)

Outbound frames are built by the small helper functions below and are
plain lists, so they can be relayed verbatim.  Inbound frames are
validated by ``decode_frame``.
"""

import json
from enum import StrEnum
from typing import Any, TypeAlias

Frame: TypeAlias = list[Any]

SHELL_OWNER = 0


class FrameTag(StrEnum):
    """Discriminator tags for frames."""

    CMD = "cmd"
    ECHO = "echo"
    EXIT = "exit"
    SET_APP = "set_app"


# Number of payload values each tag carries.
_ARITY: dict[FrameTag, int] = {
    FrameTag.CMD: 2,
    FrameTag.ECHO: 1,
    FrameTag.EXIT: 1,
    FrameTag.SET_APP: 1,
}


class FrameError(ValueError):
    """Raise when a frame is malformed."""


def echo_frame(text: str) -> Frame:
    """Build an ``echo`` frame."""
    return [FrameTag.ECHO.value, text]


def exit_frame(error: str | int | None = None) -> Frame:
    """Build an ``exit`` frame; a missing or empty error becomes 0."""
    return [FrameTag.EXIT.value, error or 0]


def set_app_frame(owner: int | str) -> Frame:
    """Build a ``set_app`` frame."""
    return [FrameTag.SET_APP.value, owner]


def cmd_frame(owner: int | str, text: str) -> Frame:
    """Build a ``cmd`` frame."""
    return [FrameTag.CMD.value, owner, text]


def encode_frame(frame: Frame) -> str:
    """Serialise a frame to its JSON text."""
    return json.dumps(frame)


def decode_frame(raw: str | bytes | list[Any]) -> Frame:
    """Parse and validate an inbound frame.

    Args:
        raw: JSON text, or an already-decoded list.

    Returns:
        The frame as a list with a known tag and the right arity.

    Raises:
        FrameError: If the frame is not valid JSON, not a non-empty
            array, has an unknown tag, or the wrong number of values.

    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            msg = f"Frame is not valid JSON: {e}"
            raise FrameError(msg) from e
    else:
        data = raw

    if not isinstance(data, list) or not data:
        msg = "Frame must be a non-empty array"
        raise FrameError(msg)

    try:
        tag = FrameTag(data[0])
    except ValueError as e:
        msg = f"Unknown frame tag: {data[0]!r}"
        raise FrameError(msg) from e

    expected = _ARITY[tag]
    if len(data) - 1 != expected:
        msg = f"Frame {tag} expects {expected} value(s), got {len(data) - 1}"
        raise FrameError(msg)

    if tag is FrameTag.CMD:
        owner, text = data[1], data[2]
        if not isinstance(text, str):
            msg = "Frame cmd text must be a string"
            raise FrameError(msg)
        if isinstance(owner, bool) or not isinstance(owner, (int, str)):
            msg = f"Frame cmd owner must be an id, got {owner!r}"
            raise FrameError(msg)

    return [tag.value, *data[1:]]
