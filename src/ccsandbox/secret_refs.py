"""Secret references — parsing and resolution through external stores.

A reference is ``<scheme>://<locator>``:

- ``env://NAME`` — the host process environment
- ``pass://path/to/entry`` — ``pass show`` (first line)
- ``op://vault/item[/section]/field`` — ``op read``
- ``bws://<secret-id>`` — ``bws secret get`` (JSON ``value``)

Anything else is a literal. Resolved values are wrapped in ``SecretStr`` and
are never logged or written anywhere by this module; errors carry the
reference and the backend's stderr, never the value.

No caching: every call hits the backend, so resolving the same reference
twice returns the same value only as long as the backend state is unchanged.
"""

from __future__ import annotations

import enum
import json
import os
import re
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import SecretStr

from ccsandbox.errors import SecretErrorKind, SecretResolutionError
from ccsandbox.logger import logger

# Same width as SecretStr's own rendering, for every secret regardless of length.
REDACTED = "**********"

_DETAIL_LIMIT = 300


class SecretScheme(enum.Enum):
    ENV = "env"
    PASS = "pass"
    OP = "op"
    BWS = "bws"


@dataclass(frozen=True)
class SecretReference:
    scheme: SecretScheme
    locator: str

    def __str__(self) -> str:
        return f"{self.scheme.value}://{self.locator}"


@dataclass(frozen=True)
class ResolvedSecret:
    value: SecretStr
    source_scheme: SecretScheme

    def __str__(self) -> str:
        return REDACTED


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*)://(.*)$", re.DOTALL)
_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_KNOWN_PREFIXES = tuple(f"{s.value}://" for s in SecretScheme)


def is_secret_ref(value: str) -> bool:
    """True when *value* uses one of the secret schemes (``https://`` etc. are literals)."""
    return value.startswith(_KNOWN_PREFIXES)


def _malformed(value: str, detail: str) -> SecretResolutionError:
    return SecretResolutionError(SecretErrorKind.MALFORMED_REFERENCE, value, detail)


def parse_secret_ref(value: str) -> SecretReference:
    """Parse ``scheme://locator``. Raises SecretResolutionError(MALFORMED_REFERENCE)."""
    match = _SCHEME_RE.match(value)
    if match is None:
        raise _malformed(value, "expected <scheme>://<locator>")
    scheme_name, locator = match.groups()
    try:
        scheme = SecretScheme(scheme_name)
    except ValueError:
        known = ", ".join(s.value for s in SecretScheme)
        raise _malformed(value, f"unknown scheme '{scheme_name}' (known: {known})") from None

    if not locator:
        raise _malformed(value, "empty locator")
    if any(c.isspace() for c in locator):
        raise _malformed(value, "locator contains whitespace")

    if scheme is SecretScheme.ENV and not _ENV_NAME_RE.match(locator):
        raise _malformed(value, f"'{locator}' is not a valid environment variable name")
    if scheme is SecretScheme.PASS:
        segments = locator.split("/")
        if locator.startswith("/") or ".." in segments or "" in segments:
            raise _malformed(value, "pass path must be relative, e.g. pass://email/work")
    if scheme is SecretScheme.OP:
        path = locator.split("?", 1)[0]
        segments = path.split("/")
        if len(segments) not in (3, 4) or not all(segments):
            raise _malformed(value, "expected op://<vault>/<item>[/<section>]/<field>")

    return SecretReference(scheme=scheme, locator=locator)


# ---------------------------------------------------------------------------
# Backend helpers
# ---------------------------------------------------------------------------

_INSTALL_HINTS = {
    "pass": "Install it from https://www.passwordstore.org/",
    "op": "Install it from https://1password.com/downloads/command-line/",
    "bws": "Install it from https://bitwarden.com/help/secrets-manager-cli/",
}

# Lower-cased stderr fragments. Auth is checked first: an expired session
# usually hides whether the item exists at all.
_AUTH_MARKERS = (
    "not currently signed in",
    "not signed in",
    "sign in",
    "signin",
    "session expired",
    "unauthorized",
    "authentication",
    "access token",
    "invalid token",
    "forbidden",
    "decryption failed",
    "no secret key",
)
_NOT_FOUND_MARKERS = (
    "not in the password store",
    "isn't an item",
    "isn't a vault",
    "isn't a field",
    "could not find",
    "not found",
    "does not exist",
    "doesn't exist",
    "no item",
)


def _truncate(text: str) -> str:
    text = text.strip()
    return text if len(text) <= _DETAIL_LIMIT else text[:_DETAIL_LIMIT] + "..."


def _classify_failure(stderr: str) -> SecretErrorKind:
    lowered = stderr.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return SecretErrorKind.BACKEND_AUTH_FAILED
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return SecretErrorKind.SECRET_NOT_FOUND
    # The backend ran and answered, but did not hand over the secret.
    return SecretErrorKind.SECRET_NOT_FOUND


def _run_backend(tool: str, args: list[str], ref: SecretReference) -> str:
    """Run a backend CLI once and return its stdout, or raise a typed error."""
    if shutil.which(tool) is None:
        raise SecretResolutionError(
            SecretErrorKind.BACKEND_UNAVAILABLE,
            str(ref),
            f"'{tool}' not found on PATH. {_INSTALL_HINTS[tool]}",
        )
    try:
        result = subprocess.run(
            [tool, *args],
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
        )
    except OSError as exc:
        raise SecretResolutionError(
            SecretErrorKind.BACKEND_UNAVAILABLE, str(ref), f"failed to run '{tool}': {exc}"
        ) from exc

    if result.returncode != 0:
        stderr = result.stderr or ""
        kind = _classify_failure(stderr)
        detail = _truncate(stderr) or f"'{tool}' exited with status {result.returncode}"
        raise SecretResolutionError(kind, str(ref), detail)
    return result.stdout


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


def _resolve_env(ref: SecretReference) -> str:
    value = os.environ.get(ref.locator)
    if value is None:
        raise SecretResolutionError(
            SecretErrorKind.SECRET_NOT_FOUND,
            str(ref),
            f"environment variable '{ref.locator}' is not set",
        )
    return value


def _resolve_pass(ref: SecretReference) -> str:
    stdout = _run_backend("pass", ["show", ref.locator], ref)
    # pass keeps the password on the first line; the rest is free-form metadata
    return stdout.splitlines()[0] if stdout else ""


def _resolve_op(ref: SecretReference) -> str:
    return _run_backend("op", ["read", "--no-newline", str(ref)], ref)


def _resolve_bws(ref: SecretReference) -> str:
    stdout = _run_backend("bws", ["secret", "get", ref.locator, "--output", "json"], ref)
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise SecretResolutionError(
            SecretErrorKind.SECRET_NOT_FOUND, str(ref), f"unparseable bws output: {exc.msg}"
        ) from exc
    value = payload.get("value") if isinstance(payload, dict) else None
    if not isinstance(value, str):
        raise SecretResolutionError(
            SecretErrorKind.SECRET_NOT_FOUND, str(ref), "no 'value' field in bws response"
        )
    return value


_BACKENDS: dict[SecretScheme, Callable[[SecretReference], str]] = {
    SecretScheme.ENV: _resolve_env,
    SecretScheme.PASS: _resolve_pass,
    SecretScheme.OP: _resolve_op,
    SecretScheme.BWS: _resolve_bws,
}


def resolve_secret(ref: SecretReference | str) -> ResolvedSecret:
    """Resolve one reference through its backend.

    Raises SecretResolutionError with a kind the caller can act on.
    """
    if isinstance(ref, str):
        ref = parse_secret_ref(ref)
    value = _BACKENDS[ref.scheme](ref)
    logger.debug("Secret resolved", scheme=ref.scheme.value, reference=str(ref))
    return ResolvedSecret(value=SecretStr(value), source_scheme=ref.scheme)


def resolve_value(value: str) -> str | ResolvedSecret:
    """Resolve *value* if it is a secret reference; literals pass through unchanged."""
    if is_secret_ref(value):
        return resolve_secret(value)
    return value
