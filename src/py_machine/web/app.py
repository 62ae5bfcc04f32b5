"""Flask application factory for the machine's HTTP transport.

The ``create_app`` function boots a machine (unless one is given),
wraps it in a transport gateway and returns a Flask app:

- ``POST /api/sessions`` — open a client session.
- ``DELETE /api/sessions/<id>`` — close it.
- ``POST /api/sessions/<id>/frames`` — send one frame (a JSON array).
- ``GET /api/sessions/<id>/frames`` — collect outbound frames,
  long-polling up to ``?wait=`` seconds for the first one.
- ``GET /api/status`` — machine state for dashboards.
"""

from __future__ import annotations

from flask import Flask, Response, jsonify, request

from py_machine.frames import FrameError
from py_machine.gateway import SessionError, TransportGateway
from py_machine.machine import Machine, MachineState

_HTTP_CREATED = 201
_HTTP_ACCEPTED = 202
_HTTP_NO_CONTENT = 204
_HTTP_BAD_REQUEST = 400
_HTTP_NOT_FOUND = 404
_HTTP_UNAVAILABLE = 503
_MAX_WAIT = 30.0
DEFAULT_PORT = 4578


def create_app(machine: Machine | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        machine: A running machine.  If None, a default machine is
            created and booted.

    Returns:
        A configured Flask application ready to serve.

    """
    if machine is None:
        machine = Machine()
        machine.boot()
    gateway = TransportGateway(machine)

    app = Flask(__name__)
    app.extensions["py_machine.gateway"] = gateway

    def unknown_session(session_id: str) -> tuple[Response, int]:
        return jsonify({"error": f"Unknown session {session_id}"}), _HTTP_NOT_FOUND

    def halted() -> tuple[Response, int] | None:
        if machine.state is not MachineState.RUNNING:
            return jsonify({"error": "Machine halted"}), _HTTP_UNAVAILABLE
        return None

    @app.route("/api/sessions", methods=["POST"])
    def open_session() -> tuple[Response, int]:  # pyright: ignore[reportUnusedFunction]
        """Open a session and return its id."""
        if (error := halted()) is not None:
            return error
        session = gateway.open_session()
        return jsonify({"session": session.session_id}), _HTTP_CREATED

    @app.route("/api/sessions/<session_id>", methods=["DELETE"])
    def close_session(session_id: str) -> tuple[Response, int] | tuple[str, int]:  # pyright: ignore[reportUnusedFunction]
        """Close a session."""
        try:
            gateway.close_session(session_id)
        except SessionError:
            return unknown_session(session_id)
        return "", _HTTP_NO_CONTENT

    @app.route("/api/sessions/<session_id>/frames", methods=["POST"])
    def send_frame(session_id: str) -> tuple[Response, int]:  # pyright: ignore[reportUnusedFunction]
        """Route one inbound frame.

        Expects a JSON array body such as ``["cmd", 0, "hi --name Ann"]``.
        """
        if (error := halted()) is not None:
            return error
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({"error": "Body must be a JSON frame"}), _HTTP_BAD_REQUEST
        try:
            gateway.receive(session_id, data)
        except SessionError:
            return unknown_session(session_id)
        except FrameError as e:
            return jsonify({"error": str(e)}), _HTTP_BAD_REQUEST
        return jsonify({"accepted": True}), _HTTP_ACCEPTED

    @app.route("/api/sessions/<session_id>/frames", methods=["GET"])
    def collect_frames(session_id: str) -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Return the session's queued outbound frames."""
        try:
            wait = min(max(float(request.args.get("wait", 0)), 0.0), _MAX_WAIT)
        except ValueError:
            return jsonify({"error": "wait must be a number"}), _HTTP_BAD_REQUEST
        try:
            frames = gateway.drain(session_id, timeout=wait)
        except SessionError:
            return unknown_session(session_id)
        return jsonify({"frames": frames})

    @app.route("/api/status")
    def status() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return machine state for status polling."""
        running = machine.state is MachineState.RUNNING
        if not running:
            return jsonify({"running": False, "version": machine.version})
        ledger = machine.ledger
        return jsonify(
            {
                "running": True,
                "version": machine.version,
                "uptime": round(machine.uptime, 3),
                "workers": machine.scheduler.workers,
                "pending_tasks": machine.scheduler.pending,
                "ram": {"used": ledger.total_usage(), "capacity": ledger.capacity},
                "processes": len(machine.dispatcher.running),
                "sessions": gateway.session_count,
            }
        )

    return app


def main() -> None:
    """Run the HTTP transport.

    This is the ``py-machine-web`` console entry point.
    """
    app = create_app()
    app.run(port=DEFAULT_PORT, threaded=True)
