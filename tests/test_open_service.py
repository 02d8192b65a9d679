"""Tests for opening worktrees with presets."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from worktree_hub.core.open_service import (
    ApplicationNotFoundError,
    DefaultPlatformOpener,
    InvalidURLError,
    OpenService,
    validate_url,
)
from worktree_hub.core.process import CommandFailedError
from worktree_hub.models.preset import OpenCommand, OpenPreset
from worktree_hub.models.repository import Repository
from worktree_hub.models.worktree import Worktree


class RecordingOpener:
    """PlatformOpener that records what it was asked to open."""

    def __init__(self):
        self.urls: list[str] = []
        self.applications: list[tuple[Path, str]] = []

    async def open_url(self, url: str) -> None:
        self.urls.append(url)

    async def open_with_application(self, path: Path, application: str) -> None:
        self.applications.append((path, application))


@pytest.fixture
def opener() -> RecordingOpener:
    return RecordingOpener()


@pytest.fixture
def service(shell_config, opener) -> OpenService:
    return OpenService(shell=shell_config, opener=opener)


@pytest.fixture
def worktree(temp_directory: Path) -> Worktree:
    return Worktree(path=temp_directory, branch="feature/x", commit_hash="c" * 40)


@pytest.fixture
def repository(temp_directory: Path) -> Repository:
    return Repository(name="demo", path=temp_directory)


def preset(command: OpenCommand) -> OpenPreset:
    return OpenPreset(name="Test", command=command)


class TestValidateUrl:
    @pytest.mark.parametrize(
        "url", ["https://github.com/org/repo/tree/main", "file:///tmp/x", "vscode://file/tmp"]
    )
    def test_valid(self, url):
        assert validate_url(url) == url

    @pytest.mark.parametrize("url", ["", "no scheme here", "https://"])
    def test_invalid(self, url):
        with pytest.raises(InvalidURLError):
            validate_url(url)


class TestOpenService:
    def test_shell_script_runs_in_worktree(self, service, worktree, repository):
        command = OpenCommand.shell_script('echo "{{branch}}" > opened.txt')

        asyncio.run(service.open(worktree, repository, preset(command)))

        assert (worktree.path / "opened.txt").read_text().strip() == "feature/x"

    def test_failing_shell_script_raises(self, service, worktree, repository):
        with pytest.raises(CommandFailedError):
            asyncio.run(service.open(worktree, repository, preset(OpenCommand.shell_script("exit 2"))))

    def test_url_template(self, service, opener, worktree, repository):
        command = OpenCommand.url_template("https://example.com/tree/{{branch}}")

        asyncio.run(service.open(worktree, repository, preset(command)))

        assert opener.urls == ["https://example.com/tree/feature/x"]

    def test_invalid_url_is_not_opened(self, service, opener, worktree, repository):
        command = OpenCommand.url_template("{{branch}}")

        with pytest.raises(InvalidURLError):
            asyncio.run(service.open(worktree, repository, preset(command)))
        assert opener.urls == []

    def test_application(self, service, opener, worktree, repository):
        asyncio.run(service.open(worktree, repository, preset(OpenCommand.application("zed"))))

        assert opener.applications == [(worktree.path, "zed")]

    def test_reveal(self, service, opener, temp_directory):
        asyncio.run(service.reveal(temp_directory))

        assert opener.urls == [temp_directory.as_uri()]


class TestDefaultPlatformOpener:
    @pytest.fixture
    def executor(self):
        executor = MagicMock()
        executor.run_checked = AsyncMock(return_value="")
        return executor

    def test_open_url_linux(self, executor):
        asyncio.run(DefaultPlatformOpener(executor, platform="linux").open_url("https://x.io"))

        executor.run_checked.assert_awaited_once_with("xdg-open", ["https://x.io"])

    def test_open_url_macos(self, executor):
        asyncio.run(DefaultPlatformOpener(executor, platform="darwin").open_url("https://x.io"))

        executor.run_checked.assert_awaited_once_with("open", ["https://x.io"])

    def test_bundle_identifier_on_macos(self, executor):
        opener = DefaultPlatformOpener(executor, platform="darwin")

        asyncio.run(opener.open_with_application(Path("/w"), "com.microsoft.VSCode"))

        executor.run_checked.assert_awaited_once_with("open", ["-b", "com.microsoft.VSCode", "/w"])

    def test_app_name_on_macos(self, executor):
        opener = DefaultPlatformOpener(executor, platform="darwin")

        asyncio.run(opener.open_with_application(Path("/w"), "Visual Studio Code.app"))

        executor.run_checked.assert_awaited_once_with("open", ["-a", "Visual Studio Code.app", "/w"])

    def test_macos_missing_application(self, executor):
        executor.run_checked.side_effect = CommandFailedError(
            "open", 1, "Unable to find application named 'Nope.app'"
        )
        opener = DefaultPlatformOpener(executor, platform="darwin")

        with pytest.raises(ApplicationNotFoundError):
            asyncio.run(opener.open_with_application(Path("/w"), "Nope.app"))

    def test_executable_on_path(self, executor, temp_directory):
        opener = DefaultPlatformOpener(executor, platform="linux")

        asyncio.run(opener.open_with_application(temp_directory, "sh"))

        program, args = executor.run_checked.await_args.args
        assert Path(program).name == "sh"
        assert args == [str(temp_directory)]

    def test_missing_application(self, executor, temp_directory):
        opener = DefaultPlatformOpener(executor, platform="linux")

        with pytest.raises(ApplicationNotFoundError):
            asyncio.run(opener.open_with_application(temp_directory, "definitely-not-installed-app"))
        executor.run_checked.assert_not_awaited()
