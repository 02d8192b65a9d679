"""
Tests for RepositoryManager.

Tests cover:
- Adding, finding and removing repositories
- Worktree creation with default paths and setup automation
- Deletion rules for main and locked worktrees
- Refresh behavior, including per-repository failures and serialization
"""

import asyncio
import shutil
from pathlib import Path
from uuid import uuid4

import pytest

from worktree_hub.core.git import (
    InvalidBranchNameError,
    NotAGitRepositoryError,
    WorktreeLockedError,
    WorktreeNotFoundError,
)
from worktree_hub.core.repository_manager import (
    MainWorktreeError,
    RepositoryManager,
    RepositoryNotFoundError,
)
from worktree_hub.models.preset import VSCODE_PRESET, OpenCommand
from worktree_hub.models.setup_run import SetupState
from worktree_hub.models.worktree import RemoteStatusKind


@pytest.fixture
def manager(memory_store, test_config) -> RepositoryManager:
    return RepositoryManager(memory_store, test_config)


@pytest.fixture
def repo(manager, git_repo):
    return asyncio.run(manager.add_repository(git_repo))


def slow_worktree_listing(manager, monkeypatch, events):
    """Make list_worktrees yield to the event loop, recording when each call starts and ends."""
    original = manager.git.list_worktrees

    async def listing(repository_path):
        events.append(("start", repository_path))
        await asyncio.sleep(0.1)
        worktrees = await original(repository_path)
        events.append(("end", repository_path))
        return worktrees

    monkeypatch.setattr(manager.git, "list_worktrees", listing)


class TestRepositories:
    def test_add_repository(self, manager, git_repo, memory_store):
        repo = asyncio.run(manager.add_repository(git_repo))

        assert repo.name == "test-repo"
        assert repo.path == git_repo
        assert repo.worktree_count == 1
        assert repo.main_worktree.branch == "main"
        assert repo.last_refreshed is not None
        assert [r.id for r in memory_store.get_repositories()] == [repo.id]

    def test_add_from_subdirectory_uses_root(self, manager, git_repo):
        (git_repo / "src").mkdir()

        repo = asyncio.run(manager.add_repository(git_repo / "src", name="Custom"))

        assert repo.path == git_repo
        assert repo.name == "Custom"

    def test_add_duplicate_returns_none(self, manager, repo, git_repo):
        assert asyncio.run(manager.add_repository(git_repo)) is None
        assert len(manager.repositories) == 1

    def test_add_non_repository(self, manager, temp_directory):
        plain = temp_directory / "plain"
        plain.mkdir()

        with pytest.raises(NotAGitRepositoryError):
            asyncio.run(manager.add_repository(plain))

    def test_repositories_reload_from_store(self, manager, repo, memory_store, test_config):
        reloaded = RepositoryManager(memory_store, test_config)

        assert [r.id for r in reloaded.repositories] == [repo.id]
        assert reloaded.repositories[0].worktrees == []

    def test_find_repository(self, manager, repo, git_repo):
        assert manager.find_repository("test-repo").id == repo.id
        assert manager.find_repository("TEST-REPO").id == repo.id
        assert manager.find_repository(str(repo.id)).id == repo.id
        assert manager.find_repository(str(git_repo)).id == repo.id

        with pytest.raises(RepositoryNotFoundError):
            manager.find_repository("elsewhere")

    def test_get_unknown_repository(self, manager):
        with pytest.raises(RepositoryNotFoundError):
            manager.get_repository(uuid4())

    def test_remove_repository_cascades(self, manager, repo, memory_store):
        manager.set_setup_script(repo.id, "echo hi")
        manager.presets.set_repository_override(repo.id, VSCODE_PRESET.id, False)
        manager.presets.create_repository_preset(repo.id, "Docs", OpenCommand.url_template("https://x"))

        asyncio.run(manager.remove_repository(repo.id))

        assert manager.repositories == []
        assert memory_store.get_repositories() == []
        assert memory_store.get_setup_script(repo.id) is None
        assert memory_store.get_overrides(repo.id) == []
        assert memory_store.get_repository_presets(repo.id) == []


class TestRefresh:
    def test_refresh_sees_new_worktree(self, manager, repo, run_git, temp_directory):
        run_git(repo.path, "worktree", "add", "-b", "side", str(temp_directory / "side"))

        refreshed = asyncio.run(manager.refresh_repository(repo.id))

        assert refreshed.worktree_count == 2
        assert manager.get_repository(repo.id).worktree_count == 2

    def test_remote_status_attached(self, manager, git_repo_with_remote):
        repo = asyncio.run(manager.add_repository(git_repo_with_remote))

        status = repo.main_worktree.remote_branch_status
        assert status.kind == RemoteStatusKind.TRACKING
        assert status.display_text == "Up to date with origin"

    def test_refresh_all_skips_failures(self, manager, repo, run_git, make_commit, temp_directory):
        other_path = temp_directory / "other"
        other_path.mkdir()
        run_git(other_path, "init")
        run_git(other_path, "config", "user.email", "test@example.com")
        run_git(other_path, "config", "user.name", "Test User")
        make_commit(other_path, "a.txt", "a", "Init")
        other = asyncio.run(manager.add_repository(other_path))
        shutil.rmtree(other_path)

        refreshed = asyncio.run(manager.refresh_all())

        assert [r.id for r in refreshed] == [repo.id]
        assert manager.get_repository(other.id).id == other.id


    def test_same_repository_refreshes_run_one_at_a_time(self, manager, repo, monkeypatch):
        events = []
        slow_worktree_listing(manager, monkeypatch, events)

        async def refresh_twice():
            await asyncio.gather(
                manager.refresh_repository(repo.id),
                manager.refresh_repository(repo.id),
            )

        asyncio.run(refresh_twice())

        assert [kind for kind, _ in events] == ["start", "end", "start", "end"]

    def test_different_repositories_refresh_concurrently(
        self, manager, repo, run_git, make_commit, temp_directory, monkeypatch
    ):
        other_path = temp_directory / "other"
        other_path.mkdir()
        run_git(other_path, "init")
        run_git(other_path, "config", "user.email", "test@example.com")
        run_git(other_path, "config", "user.name", "Test User")
        make_commit(other_path, "a.txt", "a", "Init")
        asyncio.run(manager.add_repository(other_path))
        events = []
        slow_worktree_listing(manager, monkeypatch, events)

        asyncio.run(manager.refresh_all())

        assert [kind for kind, _ in events[:2]] == ["start", "start"]

    def test_remove_during_refresh_stays_removed(self, manager, repo, memory_store, monkeypatch):
        slow_worktree_listing(manager, monkeypatch, [])

        async def refresh_and_remove():
            refresh = asyncio.create_task(manager.refresh_repository(repo.id))
            await asyncio.sleep(0.02)
            await manager.remove_repository(repo.id)
            await refresh

        asyncio.run(refresh_and_remove())

        assert manager.repositories == []
        assert memory_store.get_repositories() == []
        with pytest.raises(RepositoryNotFoundError):
            manager.get_repository(repo.id)

    def test_refresh_all_after_remove(self, manager, repo):
        asyncio.run(manager.remove_repository(repo.id))

        assert asyncio.run(manager.refresh_all()) == []


class TestCreateWorktree:
    def test_default_path_and_new_branch(self, manager, repo, temp_directory):
        result = asyncio.run(manager.create_worktree(repo.id, "feature/ABC-123"))

        assert result.created_branch
        assert result.worktree.path == temp_directory / "feature-ABC-123"
        assert result.worktree.branch == "feature/ABC-123"
        assert result.setup_status is None
        assert manager.get_repository(repo.id).worktree_count == 2

    def test_existing_branch(self, manager, repo, run_git, temp_directory):
        run_git(repo.path, "branch", "existing")

        result = asyncio.run(manager.create_worktree(repo.id, "git checkout existing"))

        assert not result.created_branch
        assert result.worktree.branch == "existing"

    def test_remote_only_branch_is_tracked(self, manager, run_git, git_repo_with_remote):
        repo = asyncio.run(manager.add_repository(git_repo_with_remote))
        run_git(repo.path, "push", "origin", "main:remote-only")
        run_git(repo.path, "fetch", "origin")

        result = asyncio.run(manager.create_worktree(repo.id, "origin/remote-only"))

        assert result.created_branch
        assert result.worktree.branch == "remote-only"
        assert result.worktree.remote_branch_status.kind == RemoteStatusKind.TRACKING

    def test_explicit_path(self, manager, repo, temp_directory):
        target = temp_directory / "somewhere" / "else"

        result = asyncio.run(manager.create_worktree(repo.id, "topic", path=target))

        assert result.worktree.path == target

    def test_invalid_branch_name(self, manager, repo):
        with pytest.raises(InvalidBranchNameError):
            asyncio.run(manager.create_worktree(repo.id, "bad..name"))

    def test_runs_setup_script(self, manager, repo):
        manager.set_setup_script(repo.id, "echo {{branch}} > setup.txt\n# comment\necho done")
        lines = []

        result = asyncio.run(manager.create_worktree(repo.id, "with-setup", on_line=lines.append))

        assert result.setup_status.state == SetupState.COMPLETED
        assert (result.worktree.path / "setup.txt").read_text().strip() == "with-setup"
        assert [line.text for line in lines][-1] == "done"
        assert manager.setup_runner(result.worktree.path) is not None

    def test_setup_can_be_skipped(self, manager, repo):
        manager.set_setup_script(repo.id, "touch setup.txt")

        result = asyncio.run(manager.create_worktree(repo.id, "no-setup", run_setup=False))

        assert result.setup_status is None
        assert not (result.worktree.path / "setup.txt").exists()

    def test_failed_setup_keeps_worktree(self, manager, repo):
        manager.set_setup_script(repo.id, "false")

        result = asyncio.run(manager.create_worktree(repo.id, "broken-setup"))

        assert result.setup_status.state == SetupState.FAILED
        assert result.worktree.path.is_dir()


class TestDeleteAndPrune:
    def test_delete_worktree(self, manager, repo):
        created = asyncio.run(manager.create_worktree(repo.id, "temp"))

        deleted = asyncio.run(manager.delete_worktree(repo.id, "temp"))

        assert deleted.path == created.worktree.path
        assert not created.worktree.path.exists()
        assert manager.get_repository(repo.id).worktree_count == 1

    def test_delete_main_worktree_refused(self, manager, repo):
        with pytest.raises(MainWorktreeError):
            asyncio.run(manager.delete_worktree(repo.id, "main"))

    def test_delete_locked_requires_force(self, manager, repo, run_git):
        created = asyncio.run(manager.create_worktree(repo.id, "locked"))
        run_git(repo.path, "worktree", "lock", str(created.worktree.path))
        asyncio.run(manager.refresh_repository(repo.id))

        with pytest.raises(WorktreeLockedError):
            asyncio.run(manager.delete_worktree(repo.id, "locked"))

        asyncio.run(manager.delete_worktree(repo.id, "locked", force=True))
        assert not created.worktree.path.exists()

    def test_delete_unknown(self, manager, repo):
        with pytest.raises(WorktreeNotFoundError):
            asyncio.run(manager.delete_worktree(repo.id, "nope"))

    def test_prune(self, manager, repo):
        created = asyncio.run(manager.create_worktree(repo.id, "vanishing"))
        shutil.rmtree(created.worktree.path)
        asyncio.run(manager.refresh_repository(repo.id))

        pruned = asyncio.run(manager.prune_worktrees(repo.id))

        assert [wt.branch for wt in pruned] == ["vanishing"]
        assert manager.get_repository(repo.id).worktree_count == 1


class TestSetupAutomation:
    def test_run_by_worktree_name(self, manager, repo):
        manager.set_setup_script(repo.id, "echo again")

        status = asyncio.run(manager.run_setup_automation(repo.id, "main"))

        assert status.state == SetupState.COMPLETED
        runner = manager.setup_runner(repo.path)
        assert [line.text for line in runner.output_lines] == ["$ echo again", "again"]

    def test_dismiss_runner(self, manager, repo):
        manager.set_setup_script(repo.id, "echo x")
        asyncio.run(manager.run_setup_automation(repo.id, "main"))

        manager.dismiss_setup_runner(repo.path)

        assert manager.setup_runner(repo.path) is None

    def test_set_script_for_unknown_repository(self, manager):
        with pytest.raises(RepositoryNotFoundError):
            manager.set_setup_script(uuid4(), "echo")
