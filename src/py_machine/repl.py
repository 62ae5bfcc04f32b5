"""Interactive terminal client for the machine.

The REPL boots a machine through the bootloader, opens a gateway
session and behaves like a remote terminal:

    1. **Read** — prompt and read a line.
    2. **Send** — wrap it in a ``cmd`` frame addressed to the current app
       (0, the shell, until a ``set_app`` frame says otherwise).
    3. **Print** — show ``echo`` text and failing ``exit`` payloads as
       frames arrive.
    4. **Loop** — prompt again once the app has exited, or once an app
       that is still running (waiting for input) has gone quiet.

The frame handling lives in ``ClientState`` and is pure and testable;
``run()`` is the thin I/O wrapper around it.
"""

import readline  # noqa: F401
from collections.abc import Callable
from typing import Any

from py_machine.bootloader import Bootloader
from py_machine.frames import SHELL_OWNER, FrameTag, cmd_frame
from py_machine.gateway import TransportGateway
from py_machine.machine import Machine, MachineState

_BANNER_WIDTH = 38
_POLL_INTERVAL = 0.1
_IDLE_PROMPT = 3.0


class ClientState:
    """Track which owner the client is talking to.

    Attributes:
        current_app: Owner id that receives the next input line.
        awaiting_exit: True between sending a command and its ``exit``.

    """

    def __init__(self) -> None:
        """Start out talking to the shell."""
        self.current_app: int | str = SHELL_OWNER
        self.awaiting_exit = False

    @property
    def in_app(self) -> bool:
        """Return True while input goes to a running process."""
        return self.current_app != SHELL_OWNER

    def command(self, text: str) -> list[Any]:
        """Build the frame for a line the user typed."""
        if not self.in_app:
            self.awaiting_exit = True
        return cmd_frame(self.current_app, text)

    def handle(self, frame: list[Any]) -> str | None:
        """Apply an outbound frame and return any text to display."""
        tag, payload = frame[0], frame[1]
        if tag == FrameTag.ECHO:
            return str(payload)
        if tag == FrameTag.SET_APP:
            self.current_app = payload
            return None
        if tag == FrameTag.EXIT:
            self.current_app = SHELL_OWNER
            self.awaiting_exit = False
            return str(payload) if payload else None
        return None


def format_boot_log(boot_log: list[str], version: str) -> str:
    """Format the boot log into a displayable banner string."""
    border = "=" * _BANNER_WIDTH
    header = f"\n  {border}\n           py-machine v{version}\n      A simulated machine\n  {border}\n\n"
    body = "\n".join(f"  {msg}" for msg in boot_log)
    footer = "\nMachine running. Try 'hi --help'. Ctrl+D to quit.\n"
    return header + body + footer


def build_prompt(state: ClientState) -> str:
    """Return the prompt for the current app."""
    return "> " if state.in_app else "machine $ "


def pump(
    gateway: TransportGateway,
    session_id: str,
    state: ClientState,
    display: Callable[[str], None],
) -> None:
    """Show frames as they arrive until the command exits or a running app goes quiet."""
    idle = 0.0
    while state.awaiting_exit or state.in_app:
        frames = gateway.drain(session_id, timeout=_POLL_INTERVAL)
        if not frames:
            idle += _POLL_INTERVAL
            if state.in_app and idle >= _IDLE_PROMPT:
                break
            continue
        idle = 0.0
        for frame in frames:
            text = state.handle(frame)
            if text is not None:
                display(text)


def run() -> None:
    """Boot the machine and run the interactive client.

    This is the ``py-machine`` console entry point.
    """
    bootloader = Bootloader()
    machine: Machine = bootloader.boot()
    gateway = TransportGateway(machine)
    session = gateway.open_session()
    state = ClientState()

    print(format_boot_log(bootloader.boot_log + machine.dmesg(), machine.version))  # noqa: T201

    try:
        while machine.state is MachineState.RUNNING:
            try:
                line = input(build_prompt(state))
            except EOFError:
                print()  # noqa: T201
                break

            gateway.receive(session.session_id, state.command(line))
            pump(gateway, session.session_id, state, print)

    except KeyboardInterrupt:
        print("\nInterrupted.")  # noqa: T201

    finally:
        if machine.state is MachineState.RUNNING:
            machine.shutdown()
        print("Machine halted.")  # noqa: T201
