"""
Repository management.

RepositoryManager owns the collection of managed repositories and their
worktree listings. Each repository has its own asyncio.Lock: refreshes and
worktree changes of one repository are serialized, different repositories
proceed concurrently.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import UUID

from worktree_hub.config import Config
from worktree_hub.core.branch_names import (
    is_valid_branch_name,
    parse_branch_input,
    sanitize_for_folder,
)
from worktree_hub.core.git import (
    GitError,
    GitService,
    InvalidBranchNameError,
    NotAGitRepositoryError,
    WorktreeLockedError,
    WorktreeNotFoundError,
)
from worktree_hub.core.presets import PresetManager
from worktree_hub.core.process import ProcessExecutor
from worktree_hub.core.setup_runner import LineListener, SetupAutomationRunner, parse_commands
from worktree_hub.core.store import ConfigStore
from worktree_hub.models.repository import Repository, RepositoryRecord
from worktree_hub.models.setup_run import SetupStatus
from worktree_hub.models.worktree import (
    Branch,
    RemoteBranchStatus,
    Worktree,
    WorktreeCreateResult,
)

logger = logging.getLogger(__name__)


class RepositoryNotFoundError(Exception):
    """Raised when no managed repository matches an id, name or path."""

    def __init__(self, identifier: str | UUID):
        self.identifier = identifier
        super().__init__(f"Repository '{identifier}' is not managed")


class MainWorktreeError(GitError):
    """Raised when trying to delete a repository's main worktree."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"'{path}' is the main worktree and cannot be deleted")


class RepositoryManager:
    """
    Manages repositories, their worktrees and setup automation.

    Repository identities are persisted through the ConfigStore; worktree
    listings are kept in memory and rebuilt on every refresh.
    """

    def __init__(
        self,
        store: ConfigStore,
        config: Optional[Config] = None,
        executor: Optional[ProcessExecutor] = None,
        git: Optional[GitService] = None,
    ):
        self.store = store
        self.config = config or Config()
        self.executor = executor or ProcessExecutor(queue_size=self.config.setup.queue_size)
        self.git = git or GitService(self.executor, self.config.git.resolve_executable())
        self.presets = PresetManager(store)
        self._repositories: dict[UUID, Repository] = {}
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._setup_runners: dict[Path, SetupAutomationRunner] = {}
        self.load_repositories()

    # Collection

    def load_repositories(self) -> list[Repository]:
        """(Re)load repository identities from the store, without worktrees."""
        self._repositories = {
            record.id: Repository.from_record(record) for record in self.store.get_repositories()
        }
        return self.repositories

    @property
    def repositories(self) -> list[Repository]:
        return sorted(self._repositories.values(), key=lambda r: r.name.casefold())

    def get_repository(self, repository_id: UUID) -> Repository:
        try:
            return self._repositories[repository_id]
        except KeyError:
            raise RepositoryNotFoundError(repository_id) from None

    def find_repository(self, identifier: str) -> Repository:
        """
        Find a repository by id, name or path.

        Raises:
            RepositoryNotFoundError: If nothing matches.
        """
        for repo in self._repositories.values():
            if str(repo.id) == identifier or repo.name == identifier:
                return repo

        candidate = Path(identifier).expanduser()
        if candidate.exists():
            resolved = candidate.resolve()
            for repo in self._repositories.values():
                if repo.path.resolve() == resolved:
                    return repo

        lowered = identifier.casefold()
        for repo in self._repositories.values():
            if repo.name.casefold() == lowered:
                return repo

        raise RepositoryNotFoundError(identifier)

    def _lock(self, repository_id: UUID) -> asyncio.Lock:
        if repository_id not in self._locks:
            self._locks[repository_id] = asyncio.Lock()
        return self._locks[repository_id]

    async def add_repository(self, path: Path, name: Optional[str] = None) -> Optional[Repository]:
        """
        Start managing the repository at ``path``.

        Args:
            path: Any directory inside the repository.
            name: Display name; defaults to the repository folder name.

        Returns:
            The refreshed repository, or None when it is already managed.

        Raises:
            NotAGitRepositoryError: If ``path`` is not inside a git repository.
        """
        path = Path(path).expanduser().resolve()
        if not await self.git.is_git_repository(path):
            raise NotAGitRepositoryError(path)

        root = (await self.git.get_toplevel(path)).resolve()
        if any(repo.path.resolve() == root for repo in self._repositories.values()):
            logger.info(f"Repository at {root} is already managed")
            return None

        record = RepositoryRecord(name=name or root.name, path=root)
        self.store.add_repository(record)
        self._repositories[record.id] = Repository.from_record(record)
        logger.info(f"Added repository '{record.name}' at {root}")

        return await self.refresh_repository(record.id)

    async def remove_repository(self, repository_id: UUID) -> Repository:
        """
        Stop managing a repository and drop everything stored for it.

        Waits for a refresh or worktree change of the repository in progress.

        Raises:
            RepositoryNotFoundError: If the repository is not managed.
        """
        async with self._lock(repository_id):
            repo = self.get_repository(repository_id)

            for worktree in repo.worktrees:
                self.dismiss_setup_runner(worktree.path)

            self.store.remove_repository(repository_id)
            self.store.clear_overrides(repository_id=repository_id)
            self.store.set_setup_script(repository_id, None)
            self.store.set_repository_presets(repository_id, [])

            del self._repositories[repository_id]
        self._locks.pop(repository_id, None)
        logger.info(f"Removed repository '{repo.name}'")
        return repo

    # Refresh

    async def refresh_repository(self, repository_id: UUID) -> Repository:
        """
        Re-read the repository's worktrees and their remote status.

        Raises:
            RepositoryNotFoundError: If the repository is not managed.
            ProcessError: If listing worktrees fails.
        """
        async with self._lock(repository_id):
            return await self._refresh(repository_id)

    async def _refresh(self, repository_id: UUID) -> Repository:
        repo = self.get_repository(repository_id)
        worktrees = await self.git.list_worktrees(repo.path)

        statuses = await asyncio.gather(
            *(self._remote_status(repo.path, wt) for wt in worktrees)
        )
        worktrees = [
            wt.model_copy(update={"remote_branch_status": status})
            for wt, status in zip(worktrees, statuses)
        ]

        updated = repo.model_copy(update={"worktrees": worktrees, "last_refreshed": datetime.now()})
        # load_repositories() may have replaced the collection meanwhile.
        if repository_id in self._repositories:
            self._repositories[repository_id] = updated
        logger.debug(f"Refreshed '{repo.name}': {len(worktrees)} worktrees")
        return updated

    async def _remote_status(self, repository_path: Path, worktree: Worktree) -> RemoteBranchStatus:
        if worktree.is_detached:
            return RemoteBranchStatus.no_upstream()
        return await self.git.get_remote_branch_status(repository_path, worktree.branch)

    async def refresh_all(self) -> list[Repository]:
        """Refresh every repository concurrently; failures are logged and skipped."""
        names = {repo.id: repo.name for repo in self._repositories.values()}
        results = await asyncio.gather(
            *(self.refresh_repository(repository_id) for repository_id in names),
            return_exceptions=True,
        )

        refreshed = []
        for repository_id, result in zip(names, results):
            if isinstance(result, Exception):
                name = names[repository_id]
                logger.warning(f"Failed to refresh repository '{name}': {result}")
            else:
                refreshed.append(result)
        return refreshed

    # Worktrees

    def default_worktree_path(self, repository: Repository, branch: str) -> Path:
        """Where a worktree for ``branch`` goes when no path is given."""
        base = repository.path / self.config.worktree.base_directory
        return (base / sanitize_for_folder(branch)).resolve()

    async def create_worktree(
        self,
        repository_id: UUID,
        branch: str,
        path: Optional[Path] = None,
        run_setup: Optional[bool] = None,
        base: Optional[str] = None,
        on_line: Optional[LineListener] = None,
    ) -> WorktreeCreateResult:
        """
        Create a worktree, creating the branch when it does not exist yet.

        Args:
            repository_id: Repository to create the worktree in.
            branch: Branch name or a pasted git command naming one.
            path: Worktree directory; defaults to default_worktree_path().
            run_setup: Run the setup script; defaults to ``setup.run_on_create``.
            base: Start point for a newly created branch.
            on_line: Receives setup output lines as they arrive.

        Returns:
            WorktreeCreateResult with the new worktree and setup outcome.

        Raises:
            InvalidBranchNameError: If the branch name is not valid.
            GitError: If git refuses to create the worktree.
        """
        repo = self.get_repository(repository_id)
        branch_name = parse_branch_input(branch)
        if not is_valid_branch_name(branch_name):
            raise InvalidBranchNameError(branch_name or branch)

        target = Path(path).expanduser().resolve() if path else self.default_worktree_path(repo, branch_name)

        async with self._lock(repository_id):
            exists = await self.git.branch_exists(repo.path, branch_name)
            create_branch = not exists and not await self._remote_branch_exists(repo.path, branch_name)

            await self.git.add_worktree(
                repo.path, branch_name, target, create_branch=create_branch, base=base
            )
            repo = await self._refresh(repository_id)

        worktree = repo.find_worktree(str(target)) or Worktree(path=target, branch=branch_name)
        result = WorktreeCreateResult(worktree=worktree, created_branch=not exists)

        should_run = self.config.setup.run_on_create if run_setup is None else run_setup
        script = self.store.get_setup_script(repository_id)
        if should_run and script and parse_commands(script):
            result.setup_status = await self.run_setup_automation(
                repository_id, worktree, on_line=on_line
            )

        return result

    async def _remote_branch_exists(self, repository_path: Path, branch: str) -> bool:
        # git worktree add checks out <remote>/<branch> as a tracking branch
        # when exactly one remote has it.
        remotes = await self.git.list_branches(repository_path, include_remote=True)
        return any(b.is_remote and b.local_name == branch for b in remotes)

    def _find_worktree(self, repo: Repository, identifier: str) -> Worktree:
        worktree = repo.find_worktree(identifier)
        if worktree is None:
            raise WorktreeNotFoundError(identifier)
        return worktree

    async def delete_worktree(
        self, repository_id: UUID, identifier: str, force: bool = False
    ) -> Worktree:
        """
        Remove a worktree by folder name, branch or path.

        Raises:
            WorktreeNotFoundError: If no worktree matches.
            MainWorktreeError: For the main worktree.
            WorktreeLockedError: For a locked worktree without ``force``.
            WorktreeDirtyError: For a worktree with changes without ``force``.
        """
        async with self._lock(repository_id):
            repo = self.get_repository(repository_id)
            worktree = self._find_worktree(repo, identifier)

            if worktree.is_main:
                raise MainWorktreeError(worktree.path)
            if worktree.is_locked and not force:
                raise WorktreeLockedError(worktree.path)

            await self.git.remove_worktree(repo.path, worktree.path, force=force)
            self.dismiss_setup_runner(worktree.path)
            await self._refresh(repository_id)

        return worktree

    async def prune_worktrees(self, repository_id: UUID) -> list[Worktree]:
        """Prune worktrees whose directories are gone; returns the pruned ones."""
        async with self._lock(repository_id):
            repo = self.get_repository(repository_id)
            prunable = repo.prunable_worktrees
            await self.git.prune_worktrees(repo.path)
            await self._refresh(repository_id)
        return prunable

    async def fetch(self, repository_id: UUID) -> Repository:
        """Fetch all remotes, then refresh so remote status is current."""
        async with self._lock(repository_id):
            repo = self.get_repository(repository_id)
            await self.git.fetch(repo.path, prune=self.config.git.fetch_prune)
            return await self._refresh(repository_id)

    async def list_branches(self, repository_id: UUID, include_remote: bool = False) -> list[Branch]:
        repo = self.get_repository(repository_id)
        return await self.git.list_branches(repo.path, include_remote=include_remote)

    # Setup automation

    def get_setup_script(self, repository_id: UUID) -> Optional[str]:
        return self.store.get_setup_script(repository_id)

    def set_setup_script(self, repository_id: UUID, script: Optional[str]) -> None:
        self.get_repository(repository_id)
        self.store.set_setup_script(repository_id, script)

    def setup_runner(self, worktree_path: Path) -> Optional[SetupAutomationRunner]:
        """The runner currently attached to a worktree, if any."""
        return self._setup_runners.get(Path(worktree_path))

    async def run_setup_automation(
        self,
        repository_id: UUID,
        worktree: Worktree | str,
        on_line: Optional[LineListener] = None,
    ) -> SetupStatus:
        """
        Run the repository's setup script in a worktree.

        One runner exists per worktree path; running again reuses it, which
        cancels a run still in progress.

        Args:
            repository_id: Repository owning the script.
            worktree: Worktree, or its folder name, branch or path.
            on_line: Receives output lines as they arrive.
        """
        repo = self.get_repository(repository_id)
        if isinstance(worktree, str):
            worktree = self._find_worktree(repo, worktree)

        runner = self._setup_runners.get(worktree.path)
        if runner is None:
            runner = SetupAutomationRunner(self.executor, self.config.shell)
            self._setup_runners[worktree.path] = runner
        runner.on_line = on_line

        return await runner.run(self.store.get_setup_script(repository_id) or "", worktree, repo)

    def dismiss_setup_runner(self, worktree_path: Path) -> None:
        """Cancel and forget the runner attached to a worktree."""
        runner = self._setup_runners.pop(Path(worktree_path), None)
        if runner is not None:
            runner.reset()


__all__ = [
    "MainWorktreeError",
    "RepositoryManager",
    "RepositoryNotFoundError",
]
