"""Run Claude Code in a throwaway container bound to a git worktree."""

__version__ = "0.3.0"
