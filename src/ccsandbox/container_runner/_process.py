"""Runtime process execution — foreground with signal forwarding, or detached.

Provides:
  - run_foreground() — run attached to the terminal, forward SIGINT/SIGTERM
  - run_detached() — ``run -d`` and return the container id
  - stop_container() — graceful stop, then force-remove
"""

from __future__ import annotations

import signal
import subprocess
from collections.abc import Iterator
from contextlib import contextmanager

from ccsandbox.errors import ContainerRuntimeError
from ccsandbox.logger import logger
from ccsandbox.types import LaunchPlan

_FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_MISSING_CONTAINER_MARKERS = ("no such container", "no container with name or id")


@contextmanager
def _forward_signals(proc: subprocess.Popen[bytes]) -> Iterator[None]:
    """Relay interrupt/terminate to *proc* while it runs; restore handlers after."""

    def _relay(signum: int, _frame: object) -> None:
        logger.debug("Forwarding signal to runtime", signal=signal.Signals(signum).name)
        if proc.poll() is None:
            proc.send_signal(signum)

    previous = {sig: signal.signal(sig, _relay) for sig in _FORWARDED_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _spawn_error(plan: LaunchPlan, exc: OSError) -> ContainerRuntimeError:
    return ContainerRuntimeError(f"Failed to start {plan.runtime}: {exc}")


def run_foreground(plan: LaunchPlan) -> None:
    """Run the container in the foreground, blocking until it exits.

    Raises:
        ContainerRuntimeError: the runtime exited non-zero; ``exit_code`` carries
            its status so the CLI can propagate it.
    """
    argv = plan.argv()
    logger.debug("Starting container", container=plan.container_name, runtime=plan.runtime)
    try:
        proc = subprocess.Popen(argv, env=plan.process_env())
    except OSError as exc:
        raise _spawn_error(plan, exc) from exc

    with _forward_signals(proc):
        returncode = proc.wait()

    if returncode != 0:
        # Negative: killed by a signal; report it the way a shell would.
        exit_code = 128 - returncode if returncode < 0 else returncode
        raise ContainerRuntimeError(
            f"Container {plan.container_name} exited with status {exit_code}",
            exit_code=exit_code,
        )
    logger.debug("Container exited", container=plan.container_name)


def run_detached(plan: LaunchPlan) -> str:
    """Start the container in the background; return its short id."""
    try:
        result = subprocess.run(
            plan.argv(),
            env=plan.process_env(),
            capture_output=True,
            text=True,
            stdin=subprocess.DEVNULL,
        )
    except OSError as exc:
        raise _spawn_error(plan, exc) from exc
    if result.returncode != 0:
        raise ContainerRuntimeError(
            f"{plan.runtime} run failed (exit {result.returncode}): {result.stderr.strip()}",
            exit_code=result.returncode,
        )
    container_id = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
    return container_id[:12]


def stop_container(runtime_cli: str, container_name: str, *, timeout: int = 10) -> None:
    """Stop gracefully, then force-remove. A container that is already gone is not an error.

    Raises:
        ContainerRuntimeError: ``stop`` failed for any other reason; the
            container may still be running.
    """
    result = subprocess.run(
        [runtime_cli, "stop", "-t", str(timeout), container_name],
        capture_output=True,
        text=True,
        stdin=subprocess.DEVNULL,
    )
    if result.returncode != 0:
        stderr = result.stderr.strip()
        if not any(marker in stderr.lower() for marker in _MISSING_CONTAINER_MARKERS):
            raise ContainerRuntimeError(
                f"Failed to stop container {container_name}: {stderr}",
                exit_code=result.returncode,
            )
        logger.debug("Container already gone", container=container_name)
    # --rm containers disappear on stop; removal is best-effort
    subprocess.run(
        [runtime_cli, "rm", "-f", container_name],
        capture_output=True,
        stdin=subprocess.DEVNULL,
    )
