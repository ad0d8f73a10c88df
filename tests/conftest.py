"""Test configuration and fixtures."""

from pathlib import Path
from typing import Callable, Generator

import pytest
from git import Actor, Repo

AUTHOR = Actor("Test User", "test@example.com")


def commit_file(repo: Repo, name: str, content: str, message: str) -> None:
    """Write a file in the working tree and commit it."""
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    repo.index.commit(message, author=AUTHOR, committer=AUTHOR)


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a test environment with local and remote repositories.

    Branches in the local repository:
        main               base, in sync with origin/main
        feature/merged     merged into main with a merge commit, upstream still there
        feature/squashed   squash merged into main, upstream still there
        feature/test       pushed, not merged
        feature/gone       not merged, upstream deleted
        feature/current    checked out, pushed, not merged

    Remote-only branch:
        feature/remote-merged  merged into main, no local branch

    Returns:
        Tuple of (local_repo_path, remote_repo_path)
    """
    remote_path = tmp_path / "remote"
    local_path = tmp_path / "local"
    remote_path.mkdir()
    local_path.mkdir()

    remote_repo = Repo.init(remote_path, bare=True)
    remote_repo.git.symbolic_ref("HEAD", "refs/heads/main")

    local_repo = Repo.init(local_path)
    local_repo.git.symbolic_ref("HEAD", "refs/heads/main")
    with local_repo.config_writer() as writer:
        writer.set_value("user", "name", AUTHOR.name)
        writer.set_value("user", "email", AUTHOR.email)

    commit_file(local_repo, "README.md", "# Test Repository", "Initial commit")

    local_repo.create_remote("origin", url=str(remote_path))
    local_repo.git.push("-u", "origin", "main")

    def create_branch(name: str, *contents: str) -> None:
        """Create a branch off main with one commit per content and push it with tracking."""
        local_repo.git.checkout("main")
        local_repo.git.checkout("-b", name)
        for index, content in enumerate(contents):
            commit_file(local_repo, f"{name}.txt", content, f"{name}: change {index}")
        local_repo.git.push("-u", "origin", name)

    create_branch("feature/merged", "Merged branch content")
    local_repo.git.checkout("main")
    local_repo.git.merge("feature/merged", "--no-ff", "-m", "Merge feature/merged")

    create_branch("feature/squashed", "Squashed content", "Squashed content, take two")
    local_repo.git.checkout("main")
    local_repo.git.merge("--squash", "feature/squashed")
    local_repo.git.commit("-m", "Squash feature/squashed")

    create_branch("feature/remote-merged", "Remote merged content")
    local_repo.git.checkout("main")
    local_repo.git.merge("feature/remote-merged", "--no-ff", "-m", "Merge feature/remote-merged")
    local_repo.git.branch("-D", "feature/remote-merged")

    local_repo.git.push("origin", "main")

    create_branch("feature/test", "Test branch content", "More test branch content")

    create_branch("feature/gone", "Gone branch content")
    local_repo.git.push("origin", "--delete", "feature/gone")

    create_branch("feature/current", "Current branch content")

    yield local_path, remote_path


@pytest.fixture
def local_repo(test_env: tuple[Path, Path]) -> Repo:
    """GitPython handle on the local repository."""
    local_path, _ = test_env
    return Repo(local_path)


@pytest.fixture
def commit() -> Callable[..., None]:
    """Helper that writes and commits a file."""
    return commit_file
