"""Tests for git worktree provisioning.

Uses real git repos via tmp_path to validate actual git behavior.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

import pytest
from conftest import git, make_settings

from ccsandbox.config import WorktreeConfig
from ccsandbox.errors import (
    BranchNotFoundError,
    CannotCreateFromWorktreeError,
    GitError,
    WorktreeConflict,
)
from ccsandbox.git_ops.repo import resolve_repository_context
from ccsandbox.git_ops.worktree import (
    WorktreeSpec,
    build_worktree_spec,
    create_worktree,
    generate_branch_name,
    list_worktrees,
    provision_worktree,
    resolve_worktree_base,
)


class TestResolveWorktreeBase:
    def test_relative_template_hangs_off_repo_root(self):
        base = resolve_worktree_base(
            "../{repo_name}-worktrees", "proj", Path("/home/u/proj")
        )
        assert base == Path("/home/u/proj-worktrees")

    def test_absolute_template(self):
        base = resolve_worktree_base("/srv/wt/{repo_name}", "proj", Path("/home/u/proj"))
        assert base == Path("/srv/wt/proj")

    def test_home_expansion(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        base = resolve_worktree_base("~/wt/{repo_name}", "proj", Path("/home/u/proj"))
        assert base == tmp_path / "wt" / "proj"

    def test_spec_for_feature_branch(self, repo):
        ctx = resolve_repository_context(repo)
        spec = build_worktree_spec(ctx, "feature-x", create_branch=True, settings=make_settings())
        assert spec.target_directory == repo.resolve().parent / "proj-worktrees" / "feature-x"
        assert spec.create_branch is True


class TestGenerateBranchName:
    def test_format(self):
        name = generate_branch_name("ccs")
        assert re.fullmatch(r"ccs-\d{8}-\d{6}-[0-9a-f]{6}", name)

    def test_unique_within_same_second(self):
        assert generate_branch_name() != generate_branch_name()


class TestCreateWorktree:
    def test_new_branch(self, repo):
        ctx = create_worktree(repo, "feature-x", create_branch=True)

        expected = repo.resolve().parent / "proj-worktrees" / "feature-x"
        assert ctx.root == expected
        assert ctx.is_worktree is True
        assert ctx.common_git_dir == (repo / ".git").resolve()
        assert ctx.repo_name == "proj"
        assert git(expected, "branch", "--show-current").stdout.strip() == "feature-x"

    def test_existing_branch_without_create(self, repo):
        git(repo, "branch", "existing")
        ctx = create_worktree(repo, "existing")
        assert ctx.root.name == "existing"
        assert ctx.is_worktree

    def test_missing_branch_without_create(self, repo):
        with pytest.raises(BranchNotFoundError):
            create_worktree(repo, "does-not-exist")

    def test_repeat_request_reuses_worktree(self, repo):
        first = create_worktree(repo, "feature-x", create_branch=True)
        again = create_worktree(repo, "feature-x")
        assert again == first

    def test_recreates_worktree_deleted_by_hand(self, repo):
        first = create_worktree(repo, "feature-x", create_branch=True)
        shutil.rmtree(first.root)

        again = create_worktree(repo, "feature-x")
        assert again.root == first.root
        assert (again.root / "README.md").exists()
        assert [e.branch for e in list_worktrees(repo)].count("feature-x") == 1

    def test_create_branch_that_already_exists_conflicts(self, repo):
        create_worktree(repo, "feature-x", create_branch=True)
        other = make_settings(worktree=WorktreeConfig(base_path="../elsewhere"))
        with pytest.raises(WorktreeConflict) as exc_info:
            create_worktree(repo, "feature-x", create_branch=True, settings=other)
        assert exc_info.value.branch == "feature-x"

    def test_branch_checked_out_elsewhere_conflicts(self, repo):
        create_worktree(repo, "feature-x", create_branch=True)
        other = make_settings(worktree=WorktreeConfig(base_path="../elsewhere"))
        with pytest.raises(WorktreeConflict) as exc_info:
            create_worktree(repo, "feature-x", settings=other)
        assert "already checked out" in str(exc_info.value)

    def test_target_directory_occupied(self, repo):
        target = repo.resolve().parent / "proj-worktrees" / "feature-x"
        target.mkdir(parents=True)
        (target / "stray.txt").write_text("x")
        with pytest.raises(WorktreeConflict) as exc_info:
            create_worktree(repo, "feature-x", create_branch=True)
        assert exc_info.value.path == target

    def test_target_is_worktree_on_other_branch(self, repo):
        create_worktree(repo, "feature-x", create_branch=True)
        ctx = resolve_repository_context(repo)
        existing = build_worktree_spec(ctx, "feature-x", create_branch=False)
        # same directory, different branch requested
        spec = WorktreeSpec("feature-y", existing.target_directory, create_branch=True)
        with pytest.raises(WorktreeConflict):
            provision_worktree(ctx, spec)

    def test_generated_branch(self, repo):
        ctx = create_worktree(repo)
        branch = git(ctx.root, "branch", "--show-current").stdout.strip()
        assert branch.startswith("ccs-")
        assert ctx.root.name == branch

    def test_refuses_from_inside_worktree(self, repo):
        ctx = create_worktree(repo, "feature-x", create_branch=True)
        with pytest.raises(CannotCreateFromWorktreeError):
            create_worktree(ctx.root, "feature-y", create_branch=True)

    def test_invalid_branch_name(self, repo):
        with pytest.raises(GitError):
            create_worktree(repo, "bad..name", create_branch=True)


class TestListWorktrees:
    def test_lists_main_and_linked(self, repo):
        create_worktree(repo, "feature-x", create_branch=True)
        entries = list_worktrees(repo)
        branches = {e.branch for e in entries}
        assert branches == {"main", "feature-x"}
