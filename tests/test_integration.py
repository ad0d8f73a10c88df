"""Integration tests for lopper CLI.

Tests various branch trimming scenarios.
Includes tests for dry runs, deletion, confirmation, protection and porcelain output.
"""

import json
import tempfile
from pathlib import Path

import pytest
from git import Repo
from typer.testing import CliRunner

from lopper import __version__
from lopper.cli import app
from lopper.git import GitRepo


@pytest.fixture
def test_repo(test_env: tuple[Path, Path]) -> Path:
    """Create a test repository with various branch scenarios."""
    local_path, _ = test_env
    return local_path


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


def remote_heads(test_env: tuple[Path, Path]) -> set[str]:
    _, remote_path = test_env
    return {ref.name for ref in Repo(remote_path).heads}


def test_dry_run(test_env: tuple[Path, Path], test_repo: Path, runner: CliRunner) -> None:
    """Test that a dry run shows the plan and deletes nothing."""
    before = remote_heads(test_env)
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--dry-run"])

    assert result.exit_code == 0
    assert "Branches to Delete" in result.stdout
    assert "feature/merged" in result.stdout
    assert "feature/squashed" in result.stdout
    assert "origin/feature/remote-merged" in result.stdout
    assert "Dry run, nothing was deleted" in result.stdout

    assert remote_heads(test_env) == before
    assert "refs/heads/feature/merged" in GitRepo(test_repo).local_branches()


def test_kept_back_table(test_repo: Path, runner: CliRunner) -> None:
    """Test that preserved branches are listed with their reason."""
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--dry-run"])

    assert result.exit_code == 0
    assert "Kept Back" in result.stdout
    assert "a base branch" in result.stdout
    assert "out of filter scope" in result.stdout
    assert "feature/gone" in result.stdout


def test_current_branch_is_marked(test_repo: Path, runner: CliRunner) -> None:
    """Test that the checked out branch is flagged in the plan table."""
    Repo(test_repo).git.checkout("feature/merged")
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--dry-run"])

    assert result.exit_code == 0
    assert "feature/merged (current)" in result.stdout


def test_trim_without_confirmation(test_env: tuple[Path, Path], test_repo: Path, runner: CliRunner) -> None:
    """Test deleting merged branches locally and on origin."""
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "-y"])

    assert result.exit_code == 0
    assert "Successfully deleted" in result.stdout

    branches = GitRepo(test_repo).local_branches()
    assert "refs/heads/feature/merged" not in branches
    assert "refs/heads/feature/squashed" not in branches
    assert "refs/heads/feature/test" in branches
    assert "refs/heads/feature/gone" in branches
    assert "refs/heads/main" in branches
    assert remote_heads(test_env) == {"main", "feature/test", "feature/current"}


def test_trim_twice_is_clean(test_repo: Path, runner: CliRunner) -> None:
    """Test that a second run finds nothing left to delete."""
    first = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--no-confirm"])
    assert first.exit_code == 0

    second = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--no-confirm"])
    assert second.exit_code == 0
    assert "Your branches are clean" in second.stdout


def test_confirmation_cancelled(test_env: tuple[Path, Path], test_repo: Path, runner: CliRunner) -> None:
    """Test preview mode with confirmation cancelled."""
    before = remote_heads(test_env)
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update"], input="n\n")

    assert result.exit_code == 0
    assert "Proceed with deletion?" in result.stdout
    assert "Operation cancelled" in result.stdout
    assert remote_heads(test_env) == before


def test_confirmation_accepted(test_repo: Path, runner: CliRunner) -> None:
    """Test deletion after confirming."""
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update"], input="y\n")

    assert result.exit_code == 0
    assert "Successfully deleted" in result.stdout
    assert "refs/heads/feature/merged" not in GitRepo(test_repo).local_branches()


def test_confirm_can_be_disabled_in_git_config(test_repo: Path, runner: CliRunner) -> None:
    """Test that lopper.confirm is honoured."""
    Repo(test_repo).git.config("lopper.confirm", "false")
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update"])

    assert result.exit_code == 0
    assert "Proceed with deletion?" not in result.stdout
    assert "Successfully deleted" in result.stdout


def test_protection(test_env: tuple[Path, Path], test_repo: Path, runner: CliRunner) -> None:
    """Test branch protection patterns."""
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "-y", "--protected", "feature/*"])

    assert result.exit_code == 0
    assert "Your branches are clean" in result.stdout
    assert "a protected branch" in result.stdout
    assert "refs/heads/feature/merged" in GitRepo(test_repo).local_branches()
    assert "feature/remote-merged" in remote_heads(test_env)


def test_delete_stray(test_repo: Path, runner: CliRunner) -> None:
    """Test deleting a branch whose upstream is gone."""
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "-y", "--delete", "stray"])

    assert result.exit_code == 0
    branches = GitRepo(test_repo).local_branches()
    assert "refs/heads/feature/gone" not in branches
    assert "refs/heads/feature/merged" in branches


def test_update_prunes_before_planning(test_env: tuple[Path, Path], test_repo: Path, runner: CliRunner) -> None:
    """Test that the default update fetches and prunes before building the plan."""
    _, remote_path = test_env
    Repo(remote_path).git.branch("-D", "feature/merged")

    result = runner.invoke(app, ["--path", str(test_repo), "--dry-run"])

    assert result.exit_code == 0
    # the local branch is still merged, its upstream is already gone
    assert "feature/merged" in result.stdout
    assert "origin/feature/merged" not in result.stdout


def test_update_interval_skips_recent_fetch(
    test_env: tuple[Path, Path], test_repo: Path, runner: CliRunner
) -> None:
    """Test that a fetch younger than the update interval is not repeated."""
    _, remote_path = test_env
    GitRepo(test_repo).fetch()
    Repo(remote_path).git.branch("-D", "feature/merged")

    result = runner.invoke(app, ["--path", str(test_repo), "--dry-run", "--update-interval", "3600"])

    assert result.exit_code == 0
    assert "origin/feature/merged" in result.stdout


def test_porcelain_local(test_repo: Path, runner: CliRunner) -> None:
    """Test porcelain output of local branches."""
    result = runner.invoke(app, ["--path", str(test_repo), "--porcelain", "local"])

    assert result.exit_code == 0
    assert result.stdout == "feature/merged\nfeature/squashed\n"
    # porcelain never deletes
    assert "refs/heads/feature/merged" in GitRepo(test_repo).local_branches()


def test_porcelain_remote(test_repo: Path, runner: CliRunner) -> None:
    """Test porcelain output of remote branches."""
    result = runner.invoke(app, ["--path", str(test_repo), "--porcelain", "remote"])

    assert result.exit_code == 0
    assert result.stdout == "origin/feature/merged\norigin/feature/remote-merged\norigin/feature/squashed\n"


def test_porcelain_json(test_repo: Path, runner: CliRunner) -> None:
    """Test porcelain JSON output."""
    result = runner.invoke(app, ["--path", str(test_repo), "--porcelain", "json", "--delete", "all"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["to_delete"]["merged_locals"] == ["refs/heads/feature/merged", "refs/heads/feature/squashed"]
    assert data["to_delete"]["stray_locals"] == ["refs/heads/feature/gone"]
    assert {"remote": "origin", "refname": "refs/heads/feature/remote-merged"} in data["to_delete"]["merged_remotes"]
    assert data["kept_back"]["refs/heads/main"]["message"] == "a base branch"


def test_porcelain_respects_git_config(test_repo: Path, runner: CliRunner) -> None:
    """Test that lopper.delete from git config drives porcelain output."""
    Repo(test_repo).git.config("lopper.delete", "stray")
    result = runner.invoke(app, ["--path", str(test_repo), "--porcelain", "local"])

    assert result.exit_code == 0
    assert result.stdout == "feature/gone\n"


def test_invalid_porcelain_mode(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["--path", str(test_repo), "--porcelain", "xml"])
    assert result.exit_code != 0


def test_invalid_repo(runner: CliRunner) -> None:
    """Test handling of invalid repository path."""
    with tempfile.TemporaryDirectory() as temp_dir:
        result = runner.invoke(app, ["--path", temp_dir])
        assert result.exit_code == 1
        assert "Failed to open repository" in result.stdout


def test_invalid_delete_filter(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--delete", "everything"])
    assert result.exit_code == 1
    assert "Unknown delete filter" in result.stdout


def test_missing_base(test_repo: Path, runner: CliRunner) -> None:
    result = runner.invoke(app, ["--path", str(test_repo), "--no-update", "--bases", "trunk"])
    assert result.exit_code == 1
    assert "No base branch found" in result.stdout


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout
