"""Credential discovery for the agent's own authentication.

Sources are probed in a fixed order and the first one that yields a token
wins:

1. ``ANTHROPIC_API_KEY`` environment variable
2. ``~/.claude/.credentials.json`` (OAuth, written by ``claude login``)
3. macOS keychain (``Claude Code-credentials``) — darwin only
4. ``~/.config/claude/auth.json`` / ``~/.config/claude-code/auth.json``

A source that is absent, malformed or inaccessible is skipped with a debug
log; only when every source is exhausted is AuthDiscoveryExhausted raised.
The token is passed into the container by environment variable, never by
mounting the host credential files.
"""

from __future__ import annotations

import enum
import json
import os
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from pydantic import SecretStr

from ccsandbox.errors import AuthDiscoveryExhausted
from ccsandbox.logger import logger

API_KEY_ENV = "ANTHROPIC_API_KEY"
OAUTH_TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"
KEYCHAIN_SERVICE = "Claude Code-credentials"


class CredentialSource(enum.Enum):
    ENV_API_KEY = "ANTHROPIC_API_KEY env var"
    CLAUDE_DIR = "~/.claude/.credentials.json"
    MACOS_KEYCHAIN = "macOS keychain"
    CONFIG_DIR = "~/.config/claude/auth.json"


@dataclass(frozen=True)
class Credential:
    source: CredentialSource
    env_var: str  # variable the agent reads inside the container
    token: SecretStr

    @property
    def kind(self) -> str:
        return "API key" if self.env_var == API_KEY_ENV else "OAuth token"


# ---------------------------------------------------------------------------
# Probes: each returns a Credential or None, and never raises
# ---------------------------------------------------------------------------


def _from_env() -> Credential | None:
    api_key = os.environ.get(API_KEY_ENV, "")
    if not api_key:
        return None
    return Credential(CredentialSource.ENV_API_KEY, API_KEY_ENV, SecretStr(api_key))


def _from_claude_dir() -> Credential | None:
    creds_file = Path.home() / ".claude" / ".credentials.json"
    if not creds_file.exists():
        return None
    try:
        data = json.loads(creds_file.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.debug("Failed to read credentials file", path=str(creds_file), err=str(exc))
        return None

    oauth = data.get("claudeAiOauth") if isinstance(data, dict) else None
    if not isinstance(oauth, dict):
        return None
    token = oauth.get("accessToken")
    if not token or not isinstance(token, str):
        return None

    expires_at = oauth.get("expiresAt")
    if isinstance(expires_at, int | float) and expires_at < time.time() * 1000:
        # Claude Code refreshes it on startup when a refresh token is present
        logger.warning("OAuth token expired, Claude Code will attempt to refresh")
    return Credential(CredentialSource.CLAUDE_DIR, OAUTH_TOKEN_ENV, SecretStr(token))


def _from_keychain() -> Credential | None:
    try:
        result = subprocess.run(
            ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        logger.debug("Keychain lookup failed", err=str(exc))
        return None
    if result.returncode != 0:
        return None

    raw = result.stdout.strip()
    if not raw:
        return None
    # Newer Claude Code stores the whole credentials JSON; older entries are a bare token
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        token = raw
    else:
        oauth = data.get("claudeAiOauth") if isinstance(data, dict) else None
        token = oauth.get("accessToken") if isinstance(oauth, dict) else None
    if not token or not isinstance(token, str):
        return None
    return Credential(CredentialSource.MACOS_KEYCHAIN, OAUTH_TOKEN_ENV, SecretStr(token))


def _auth_json_paths() -> list[Path]:
    config = Path.home() / ".config"
    return [config / "claude" / "auth.json", config / "claude-code" / "auth.json"]


def _from_config_dir() -> Credential | None:
    for path in _auth_json_paths():
        if not path.exists():
            continue
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.debug("Failed to read auth.json", path=str(path), err=str(exc))
            continue
        token = data.get("access_token") if isinstance(data, dict) else None
        if token and isinstance(token, str):
            return Credential(CredentialSource.CONFIG_DIR, OAUTH_TOKEN_ENV, SecretStr(token))
    return None


def _probes() -> list[tuple[CredentialSource, Callable[[], Credential | None]]]:
    probes: list[tuple[CredentialSource, Callable[[], Credential | None]]] = [
        (CredentialSource.ENV_API_KEY, _from_env),
        (CredentialSource.CLAUDE_DIR, _from_claude_dir),
    ]
    if sys.platform == "darwin":
        probes.append((CredentialSource.MACOS_KEYCHAIN, _from_keychain))
    probes.append((CredentialSource.CONFIG_DIR, _from_config_dir))
    return probes


def discover_credentials() -> Credential:
    """Return the credential from the earliest satisfied source.

    Raises AuthDiscoveryExhausted when no source yields a token.
    """
    tried: list[str] = []
    for source, probe in _probes():
        tried.append(source.value)
        credential = probe()
        if credential is not None:
            logger.debug("Credentials discovered", source=source.value, kind=credential.kind)
            return credential
    raise AuthDiscoveryExhausted(tried)
