"""Transport gateway — per-client sessions relaying frames to the machine.

Each connected client gets a **session**.  A session's outbox is the
output sink handed to everything the client starts, so frames produced
by CPU workers long after the command was typed still reach the right
client.  Frames are relayed verbatim.

A session remembers the owners it started (from the ``set_app`` frames
it relays).  Closing the session force-exits those still running, so a
client that disconnects from an interactive program does not leave it
holding memory and a process-table slot.

The gateway itself knows nothing about HTTP or sockets: the web layer
(or the local REPL) calls ``receive`` with inbound frames and ``drain``
to collect outbound ones.
"""

from __future__ import annotations

import queue
import threading
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from py_machine.frames import FrameTag, decode_frame
from py_machine.logging import LogLevel
from py_machine.machine import MachineState

if TYPE_CHECKING:
    from py_machine.machine import Machine
    from py_machine.memory.ledger import Owner

SESSION_CLOSED_MESSAGE = "Error: session closed."


class SessionError(KeyError):
    """Raise when a session id is unknown."""


@dataclass
class Session:
    """One client's connection to the machine.

    Attributes:
        session_id: Unique id of the session.
        outbox: Outbound frames waiting to be collected.
        owners: Owner ids of every process started through this session,
            learnt from the ``set_app`` frames that pass through ``send``.

    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    outbox: queue.Queue[list[Any]] = field(default_factory=queue.Queue)
    owners: set[Owner] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def send(self, frame: list[Any]) -> None:
        """Queue an outbound frame (the session's output sink)."""
        if frame[0] == FrameTag.SET_APP:
            with self._lock:
                self.owners.add(frame[1])
        self.outbox.put(frame)

    def started(self) -> set[Owner]:
        """Return a copy of the owners this session has started."""
        with self._lock:
            return set(self.owners)


class TransportGateway:
    """Own the client sessions of one machine."""

    def __init__(self, machine: Machine) -> None:
        """Create a gateway for a running machine."""
        self._machine = machine
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    @property
    def session_count(self) -> int:
        """Return the number of open sessions."""
        with self._lock:
            return len(self._sessions)

    def open_session(self) -> Session:
        """Open a new client session."""
        session = Session()
        with self._lock:
            self._sessions[session.session_id] = session
        self._machine.logger.log(LogLevel.INFO, f"Session {session.session_id} opened", source="gateway")
        return session

    def close_session(self, session_id: str) -> None:
        """Close a session, discarding any undelivered frames.

        Processes the session started that are still running are
        force-exited, since nobody is left to send them input.

        Raises:
            SessionError: If the session does not exist.

        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionError(session_id)
        if self._machine.state is not MachineState.RUNNING:
            return
        dispatcher = self._machine.dispatcher
        killed = sum(
            1
            for owner in session.started()
            if dispatcher.get(owner) is not None and dispatcher.kill(owner, SESSION_CLOSED_MESSAGE)
        )
        self._machine.logger.log(
            LogLevel.INFO,
            f"Session {session_id} closed ({killed} process(es) killed)",
            source="gateway",
        )

    def session(self, session_id: str) -> Session:
        """Return the session with *session_id*.

        Raises:
            SessionError: If the session does not exist.

        """
        with self._lock:
            try:
                return self._sessions[session_id]
            except KeyError:
                raise SessionError(session_id) from None

    def receive(self, session_id: str, raw: str | bytes | list[Any]) -> None:
        """Decode an inbound frame and route it through the dispatcher.

        Raises:
            SessionError: If the session does not exist.
            FrameError: If the frame is malformed.

        """
        session = self.session(session_id)
        frame = decode_frame(raw)
        self._machine.dispatcher.route(frame, session.send)

    def drain(self, session_id: str, timeout: float = 0.0) -> list[list[Any]]:
        """Collect every queued outbound frame of a session.

        Args:
            session_id: The session to drain.
            timeout: Seconds to wait for the first frame if none is queued.

        Returns:
            The frames in the order they were produced (possibly empty).

        Raises:
            SessionError: If the session does not exist.

        """
        outbox = self.session(session_id).outbox
        frames: list[list[Any]] = []
        with suppress(queue.Empty):
            if timeout > 0:
                frames.append(outbox.get(timeout=timeout))
            while True:
                frames.append(outbox.get_nowait())
        return frames
