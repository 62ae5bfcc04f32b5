"""HTTP transport for the machine.

This package provides a Flask application that carries frames between
clients and a running machine.  It is an **optional** extra — install
with::

    pip install py-machine[web]

The ``create_app`` factory in ``app.py`` wraps a machine in a
transport gateway and serves session, frame and status endpoints.
"""
