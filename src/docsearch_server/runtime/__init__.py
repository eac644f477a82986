"""Runtime helpers for the ASGI application."""
