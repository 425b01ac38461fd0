"""Session registry — detached runs, shared by concurrent ``ccs`` processes.

Stored as a JSON list in ``<data dir>/sessions.json``. Every mutation is a
read-modify-write under an exclusive ``filelock`` on ``sessions.json.lock``,
and the new content replaces the old file atomically, so a ``ccs --list``
racing a ``ccs -d`` never loses the freshly added session.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from ccsandbox.errors import CcsError, SessionNotFoundError
from ccsandbox.logger import logger
from ccsandbox.types import Session

CONTAINER_PREFIX = "ccs-"
_LOCK_TIMEOUT = 10.0


class SessionRegistry:
    def __init__(self, path: Path, *, lock_timeout: float = _LOCK_TIMEOUT) -> None:
        self.path = path
        self._lock = FileLock(str(path) + ".lock", timeout=lock_timeout)

    # --- storage ---

    def _read(self) -> list[Session]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            logger.warning(
                "Session registry unreadable, starting empty",
                path=str(self.path),
                err=str(exc),
            )
            return []
        if not isinstance(raw, list):
            logger.warning(
                "Session registry has unexpected shape, starting empty", path=str(self.path)
            )
            return []
        return [Session.from_dict(item) for item in raw if isinstance(item, dict)]

    def _write(self, sessions: list[Session]) -> None:
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps([s.to_dict() for s in sessions], indent=2))
        os.replace(tmp, self.path)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._lock:
                yield
        except Timeout as exc:
            raise CcsError(
                f"Session registry {self.path} is locked by another ccs process"
            ) from exc

    @contextmanager
    def transaction(self) -> Iterator[list[Session]]:
        """Yield the session list for in-place edits; written back on clean exit."""
        with self._locked():
            sessions = self._read()
            yield sessions
            self._write(sessions)

    # --- operations ---

    def list(self) -> list[Session]:
        with self._locked():
            return self._read()

    def add(self, session: Session) -> None:
        with self.transaction() as sessions:
            sessions[:] = [s for s in sessions if s.container_name != session.container_name]
            sessions.append(session)
        logger.debug("Session registered", container=session.container_name)

    def remove(self, container_name: str) -> Session | None:
        removed: Session | None = None
        with self.transaction() as sessions:
            for s in sessions:
                if s.container_name == container_name:
                    removed = s
            sessions[:] = [s for s in sessions if s.container_name != container_name]
        return removed

    def prune(self, alive: set[str]) -> list[Session]:
        """Drop sessions whose container name is not in *alive*; return the dropped ones."""
        dropped: list[Session] = []
        with self.transaction() as sessions:
            dropped = [s for s in sessions if s.container_name not in alive]
            sessions[:] = [s for s in sessions if s.container_name in alive]
        for s in dropped:
            logger.info("Session exited, removed from registry", container=s.container_name)
        return dropped

    def find(self, query: str) -> Session:
        """Look a session up by container name, name without ``ccs-``, id, or unique prefix."""
        sessions = self.list()
        for s in sessions:
            if query in (s.container_name, s.id) or CONTAINER_PREFIX + query == s.container_name:
                return s

        prefixed = query if query.startswith(CONTAINER_PREFIX) else CONTAINER_PREFIX + query
        matches = [
            s
            for s in sessions
            if s.container_name.startswith(prefixed) or s.id.startswith(query)
        ]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise SessionNotFoundError(f"No session matching '{query}'")
        names = ", ".join(s.container_name for s in matches)
        raise SessionNotFoundError(f"Multiple sessions match '{query}': {names}")
