"""Local state shared across ccs invocations (the detached-session registry)."""

from ccsandbox.state.sessions import SessionRegistry


def get_registry() -> SessionRegistry:
    from ccsandbox.config import get_settings

    return SessionRegistry(get_settings().sessions_file)


__all__ = ["SessionRegistry", "get_registry"]
