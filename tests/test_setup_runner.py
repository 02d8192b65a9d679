"""
Tests for setup automation.

Commands run through /bin/sh in a temporary directory.
"""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from worktree_hub.config import ShellConfig
from worktree_hub.core.setup_runner import SetupAutomationRunner, parse_commands
from worktree_hub.models.repository import Repository
from worktree_hub.models.setup_run import OutputStream, SetupState
from worktree_hub.models.worktree import Worktree


@pytest.fixture
def worktree(temp_directory: Path) -> Worktree:
    return Worktree(path=temp_directory, branch="feature/x", commit_hash="a" * 40)


@pytest.fixture
def repository(temp_directory: Path) -> Repository:
    return Repository(name="demo", path=temp_directory)


@pytest.fixture
def runner(shell_config: ShellConfig) -> SetupAutomationRunner:
    return SetupAutomationRunner(shell=shell_config)


def texts(runner: SetupAutomationRunner) -> list[str]:
    return [line.text for line in runner.output_lines]


class TestParseCommands:
    def test_blank_lines_and_comments_dropped(self):
        script = "npm install\n\n# comment\n  npm run build  \n   # indented comment\n"

        assert parse_commands(script) == ["npm install", "npm run build"]

    def test_empty(self):
        assert parse_commands("") == []
        assert parse_commands("\n# only comments\n") == []


class TestRun:
    def test_runs_commands_in_order(self, runner, worktree, repository):
        status = asyncio.run(runner.run("echo one\necho two", worktree, repository))

        assert status.state == SetupState.COMPLETED
        assert texts(runner) == ["$ echo one", "one", "$ echo two", "two"]
        assert runner.output_lines[0].stream == OutputStream.COMMAND
        assert runner.output_lines[1].stream == OutputStream.STDOUT

    def test_stops_at_first_failure(self, runner, worktree, repository):
        status = asyncio.run(runner.run("echo one\nfalse\necho three", worktree, repository))

        assert status.state == SetupState.FAILED
        assert status.command_index == 1
        assert status.message == "Command failed: false (exit code 1)"
        assert "$ echo three" not in texts(runner)
        assert "three" not in texts(runner)

    def test_exit_code_in_message(self, runner, worktree, repository):
        status = asyncio.run(runner.run("exit 3", worktree, repository))

        assert status.message.endswith("(exit code 3)")

    def test_empty_script_completes(self, runner, worktree, repository):
        status = asyncio.run(runner.run("# nothing to do\n", worktree, repository))

        assert status.state == SetupState.COMPLETED
        assert runner.output_lines == []

    def test_placeholders_substituted(self, runner, worktree, repository):
        asyncio.run(runner.run("echo {{branch}} {{repoName}}", worktree, repository))

        assert texts(runner) == ["$ echo feature/x demo", "feature/x demo"]

    def test_runs_in_worktree_directory(self, runner, worktree, repository):
        asyncio.run(runner.run("pwd", worktree, repository))

        assert Path(texts(runner)[1]).resolve() == worktree.path.resolve()

    def test_stderr_is_captured(self, runner, worktree, repository):
        asyncio.run(runner.run("echo oops 1>&2", worktree, repository))

        stderr = [line for line in runner.output_lines if line.stream == OutputStream.STDERR]
        assert [line.text for line in stderr] == ["oops"]

    def test_partial_line_flushed_at_exit(self, runner, worktree, repository):
        asyncio.run(runner.run("printf 'no newline'", worktree, repository))

        assert texts(runner)[-1] == "no newline"

    def test_blank_output_lines_dropped(self, runner, worktree, repository):
        asyncio.run(runner.run("printf 'a\\n\\n\\nb\\n'", worktree, repository))

        assert texts(runner)[1:] == ["a", "b"]

    def test_on_line_receives_every_line(self, shell_config, worktree, repository):
        listener = MagicMock()
        runner = SetupAutomationRunner(shell=shell_config, on_line=listener)

        asyncio.run(runner.run("echo hello", worktree, repository))

        received = [call.args[0].text for call in listener.call_args_list]
        assert received == ["$ echo hello", "hello"]

    def test_missing_shell_is_a_launch_failure(self, worktree, repository):
        runner = SetupAutomationRunner(shell=ShellConfig(executable="/nonexistent/sh", login=False))

        status = asyncio.run(runner.run("echo hi\necho again", worktree, repository))

        assert status.state == SetupState.FAILED
        assert status.command_index == 0
        assert status.message == "Command failed: echo hi"
        assert runner.output_lines[-1].stream == OutputStream.STDERR
        assert runner.output_lines[-1].text.startswith("Failed to start command:")

    def test_rerun_clears_previous_output(self, runner, worktree, repository):
        asyncio.run(runner.run("echo first", worktree, repository))
        asyncio.run(runner.run("echo second", worktree, repository))

        assert texts(runner) == ["$ echo second", "second"]

    def test_empty_rerun_clears_previous_output(self, runner, worktree, repository):
        asyncio.run(runner.run("echo first", worktree, repository))

        status = asyncio.run(runner.run("# nothing to do", worktree, repository))

        assert status.state == SetupState.COMPLETED
        assert runner.output_lines == []


class TestCancelAndReset:
    def test_cancel_returns_to_idle(self, runner, worktree, repository):
        async def scenario():
            task = asyncio.create_task(
                runner.run("echo started\nsleep 30\necho never", worktree, repository)
            )
            for _ in range(200):
                if runner.is_running and runner.status.command_index == 1:
                    break
                await asyncio.sleep(0.02)

            runner.cancel()
            status = await asyncio.wait_for(task, timeout=10)
            lines_after_cancel = list(runner.output_lines)
            await asyncio.sleep(0.1)
            return status, lines_after_cancel

        status, lines_after_cancel = asyncio.run(scenario())

        assert status.state == SetupState.IDLE
        assert runner.status.state == SetupState.IDLE
        assert "never" not in texts(runner)
        assert runner.output_lines == lines_after_cancel

    def test_cancel_when_not_running_is_a_no_op(self, runner, worktree, repository):
        asyncio.run(runner.run("echo done", worktree, repository))

        runner.cancel()

        assert runner.status.state == SetupState.COMPLETED
        assert texts(runner) == ["$ echo done", "done"]

    def test_reset_clears_output(self, runner, worktree, repository):
        asyncio.run(runner.run("false", worktree, repository))

        runner.reset()

        assert runner.status.state == SetupState.IDLE
        assert runner.output_lines == []
