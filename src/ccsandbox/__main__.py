"""Entry point for `ccs` / `python -m ccsandbox`.

Usage:
    ccs [PATH]                  Sandbox in a fresh worktree (generated branch)
    ccs --new BRANCH [-b]       Sandbox in the worktree for BRANCH (-b creates it)
    ccs --here                  Sandbox directly in PATH
    ccs -d ...                  Detached; manage with --list/--attach/--logs/--stop
    ccs --dry-run ...           Print the runtime command instead of running it
    ccs ... -- ARGS             Pass ARGS through to the agent
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _split_passthrough(argv: list[str]) -> tuple[list[str], list[str]]:
    if "--" in argv:
        idx = argv.index("--")
        return argv[:idx], argv[idx + 1 :]
    return argv, []


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccs",
        description="Run Claude Code in an isolated, ephemeral container",
        epilog="Arguments after -- are passed to the agent unchanged.",
    )
    parser.add_argument(
        "path", nargs="?", type=Path, help="Project directory (default: current directory)"
    )

    wt = parser.add_mutually_exclusive_group()
    wt.add_argument("--new", metavar="BRANCH", help="Create or reuse a worktree for BRANCH")
    wt.add_argument(
        "--here", action="store_true", help="Run in PATH itself, without a worktree"
    )
    parser.add_argument(
        "-b",
        "--branch",
        dest="create_branch",
        action="store_true",
        help="Create BRANCH when used with --new",
    )

    parser.add_argument("-d", "--detach", action="store_true", help="Run in the background")
    parser.add_argument(
        "--dry-run", action="store_true", help="Print the runtime command without running it"
    )

    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("--list", action="store_true", help="List running ccs sessions")
    ops.add_argument("--attach", metavar="CONTAINER", help="Attach to a running session")
    ops.add_argument("--logs", metavar="CONTAINER", help="Follow logs of a session")
    ops.add_argument("--stop", metavar="CONTAINER", help="Stop a running session")
    ops.add_argument(
        "--status", action="store_true", help="Show runtime, image, credential and config status"
    )
    ops.add_argument(
        "--cleanup", action="store_true", help="Remove orphaned ccs worktrees of PATH's repo"
    )
    ops.add_argument(
        "--config", action="store_true", help="Create the default config file and print its path"
    )

    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging"
    )
    return parser


def _cleanup(path: Path) -> None:
    from ccsandbox.container_runner._session import workspaces_in_use
    from ccsandbox.git_ops.cleanup import cleanup_orphaned_worktrees
    from ccsandbox.git_ops.repo import resolve_repository_context

    repo_ctx = resolve_repository_context(path)
    result = cleanup_orphaned_worktrees(repo_ctx, in_use=workspaces_in_use())
    if result.removed:
        print(f"Cleaned up {len(result.removed)} orphaned worktree(s):")
        for removed in result.removed:
            print(f"  - {removed}")
    else:
        print("No orphaned worktrees.")
    for kept, reason in result.kept.items():
        print(f"Kept {kept}: {reason}")
    for err in result.errors:
        print(f"Warning: {err}", file=sys.stderr)


def _dispatch(args: argparse.Namespace, passthrough: list[str]) -> None:
    from ccsandbox.config import get_settings, write_default_config
    from ccsandbox.logger import set_level

    if args.config:
        path, created = write_default_config()
        print(f"{'Created default config at' if created else 'Config file'}: {path}")
        return

    s = get_settings()
    if args.verbose:
        set_level("DEBUG" if args.verbose > 1 else "INFO")
    elif s.logging.level:
        set_level(s.logging.level)

    from ccsandbox import container_runner
    from ccsandbox.status import check_status

    if args.status:
        print(check_status(s).render())
        return
    if args.list:
        print(container_runner.format_sessions(container_runner.list_sessions(s)))
        return
    if args.attach:
        container_runner.attach_session(args.attach, s)
        return
    if args.logs:
        container_runner.show_logs(args.logs, settings=s)
        return
    if args.stop:
        session = container_runner.stop_session(args.stop, s)
        print(f"Stopped {session.container_name}.")
        return

    path = (args.path or Path.cwd()).expanduser()
    if args.cleanup:
        _cleanup(path)
        return

    if args.here:
        mode = "here"
    elif args.new:
        mode = "new"
    else:
        mode = "auto"
    request = container_runner.LaunchRequest(
        path=path,
        mode=mode,
        branch=args.new,
        create_branch=args.create_branch,
        detach=args.detach,
        dry_run=args.dry_run,
        extra_args=passthrough,
    )
    container_runner.launch(request, s)


def main(argv: list[str] | None = None) -> None:
    own_args, passthrough = _split_passthrough(list(sys.argv[1:] if argv is None else argv))
    parser = _build_parser()
    args = parser.parse_args(own_args)
    if args.create_branch and not args.new:
        parser.error("-b/--branch requires --new BRANCH")

    from ccsandbox.errors import CcsError, ContainerRuntimeError

    try:
        _dispatch(args, passthrough)
    except ContainerRuntimeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(exc.exit_code)
    except CcsError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
