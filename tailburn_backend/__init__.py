"""Backend utilities for tailburn single-use file drops.

This package keeps the FastAPI route handlers in server.py thin:
- session state (single-use flags, capability paths)
- identity lookups against the tailnet
- shutdown coordination (first trigger wins)
- the cooperating retrieval client

Security note:
The secret path is a capability token. Anyone who knows it can reach the
delivery route, so it is generated from `secrets` and only ever printed to
the sender's terminal. The identity check still runs on every request.
"""
