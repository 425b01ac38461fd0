"""Git plumbing: repository inspection, worktree provisioning and cleanup."""
