"""Git repository operations."""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from lopper.branch import HEADS_PREFIX, REMOTES_PREFIX, LocalBranch, RefSpec, RemoteBranch, RemoteTrackingBranch

logger = logging.getLogger(__name__)

# commit-tree needs an identity even for a commit nobody will ever see
SQUASH_TEST_ENV = {
    "GIT_AUTHOR_NAME": "lopper",
    "GIT_AUTHOR_EMAIL": "lopper@squash.merge.test.local",
    "GIT_COMMITTER_NAME": "lopper",
    "GIT_COMMITTER_EMAIL": "lopper@squash.merge.test.local",
}


class GitError(Exception):
    """Git operation error."""


@dataclass
class Remote:
    """A configured remote and its refspecs."""

    name: str
    url: str
    fetch_refspecs: list[RefSpec] = field(default_factory=list)
    push_refspecs: list[RefSpec] = field(default_factory=list)

    def to_tracking(self, refname: str) -> Optional[str]:
        """Map a ref on the remote to the local remote-tracking ref."""
        for spec in self.fetch_refspecs:
            tracking = spec.map_src(refname)
            if tracking is not None:
                return tracking
        return None

    def from_tracking(self, tracking: str) -> Optional[str]:
        """Map a remote-tracking ref back to the ref on the remote.

        When several refspecs match, the one with the longest fixed prefix wins,
        so ``refs/remotes/origin/pr/*`` beats ``refs/remotes/origin/*``.
        """
        candidates = []
        for spec in self.fetch_refspecs:
            refname = spec.map_dst(tracking)
            if refname is not None:
                candidates.append((len(spec.dst.partition("*")[0]), refname))
        if not candidates:
            return None
        return max(candidates, key=lambda candidate: candidate[0])[1]

    def push_destination(self, refname: str) -> Optional[str]:
        """Where ``git push`` would send ``refname`` according to remote.<name>.push."""
        for spec in self.push_refspecs:
            if not spec.dst:
                if RefSpec.match(spec.src, refname) is not None:
                    return refname
                continue
            destination = spec.map_src(refname)
            if destination is not None:
                return destination
        return None


def _normalize_key(key: str) -> str:
    # section and variable names are case insensitive, subsections are not
    section, _, rest = key.partition(".")
    subsection, _, variable = rest.rpartition(".")
    if subsection:
        return f"{section.lower()}.{subsection}.{variable.lower()}"
    return f"{section.lower()}.{variable.lower()}"


class GitRepo:
    """Git repository operations.

    Config, refs and remotes are read once and cached. Anything that changes
    refs (fetch, delete) drops the ref caches again.
    """

    def __init__(self, path: Path) -> None:
        """Initialize repository."""
        try:
            self.repo: Repo = Repo(path)
            if self.repo.bare:
                raise GitError("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise GitError(f"Failed to open repository: {err}") from err

        self._config: Optional[dict[str, list[str]]] = None
        self._remotes: Optional[dict[str, Remote]] = None
        self._refs: Optional[dict[str, str]] = None
        self._remote_heads: dict[str, set[str]] = {}
        self._merged: dict[tuple[str, str], bool] = {}

    def refresh(self) -> None:
        """Forget cached refs after something changed them."""
        self._refs = None
        self._remote_heads = {}

    # -- config -----------------------------------------------------------

    def _config_entries(self) -> dict[str, list[str]]:
        if self._config is None:
            entries: dict[str, list[str]] = {}
            try:
                raw = self.repo.git.config("--list", "-z")
            except GitCommandError as err:
                raise GitError(f"Failed to read git config: {err}") from err
            for entry in raw.split("\0"):
                if not entry:
                    continue
                key, newline, value = entry.partition("\n")
                if not newline:
                    # a bare "key" with no "=" means true
                    value = "true"
                entries.setdefault(_normalize_key(key), []).append(value)
            self._config = entries
        return self._config

    def config_get_all(self, key: str) -> list[str]:
        """All values of a multi-valued config key, in config order."""
        return list(self._config_entries().get(_normalize_key(key), []))

    def config_get(self, key: str) -> Optional[str]:
        """Last value of a config key, like ``git config --get``."""
        values = self._config_entries().get(_normalize_key(key))
        return values[-1] if values else None

    # -- refs -------------------------------------------------------------

    def _ref_map(self) -> dict[str, str]:
        if self._refs is None:
            try:
                output = self.repo.git.for_each_ref(
                    "--format=%(objectname) %(refname)", HEADS_PREFIX, REMOTES_PREFIX
                )
            except GitCommandError as err:
                raise GitError(f"Failed to list refs: {err}") from err
            refs = {}
            for line in output.splitlines():
                oid, _, refname = line.partition(" ")
                refs[refname] = oid
            self._refs = refs
        return self._refs

    def local_branches(self) -> list[str]:
        """Full refnames of all local branches."""
        return sorted(ref for ref in self._ref_map() if ref.startswith(HEADS_PREFIX))

    def remote_tracking_branches(self) -> list[str]:
        """Full refnames of all remote-tracking branches, without symbolic */HEAD."""
        return sorted(
            ref for ref in self._ref_map() if ref.startswith(REMOTES_PREFIX) and not ref.endswith("/HEAD")
        )

    def ref_exists(self, refname: str) -> bool:
        return refname in self._ref_map()

    def commit_of(self, refname: str) -> str:
        """Commit id a ref points to."""
        oid = self._ref_map().get(refname)
        if oid is not None:
            return oid
        try:
            return self.repo.git.rev_parse("--verify", f"{refname}^{{commit}}").strip()
        except GitCommandError as err:
            raise GitError(f"Unknown ref {refname}: {err}") from err

    def get_current_branch_name(self) -> str:
        """Get current branch name."""
        try:
            try:
                return self.repo.active_branch.name
            except TypeError:
                # Detached HEAD has no branch to protect
                return ""
        except (GitCommandError, ValueError) as err:
            raise GitError(f"Failed to get current branch: {err}") from err

    def head_refname(self) -> Optional[str]:
        """Full refname HEAD points to, or None when HEAD is detached."""
        if self.repo.head.is_detached:
            return None
        return self.repo.head.reference.path

    def merged_locals(self, base: str) -> set[str]:
        """Local branches already reachable from ``base``."""
        try:
            output = self.repo.git.for_each_ref("--format=%(refname)", "--merged", base, HEADS_PREFIX)
        except GitCommandError as err:
            raise GitError(f"Failed to list branches merged into {base}: {err}") from err
        return set(output.splitlines())

    def get_branch_last_commit(self, refname: str) -> str:
        """Get the last commit timestamp for a branch."""
        try:
            return str(self.repo.git.log("-1", "--format=%cd", "--date=format:%a - %B %d @ %H:%M", refname))
        except GitCommandError:
            return ""

    # -- remotes ----------------------------------------------------------

    def remotes(self) -> dict[str, Remote]:
        """Configured remotes, read once per repository."""
        if self._remotes is None:
            remotes = {}
            for remote in self.repo.remotes:
                name = remote.name
                remotes[name] = Remote(
                    name=name,
                    url=self.config_get(f"remote.{name}.url") or "",
                    fetch_refspecs=[RefSpec.parse(spec) for spec in self.config_get_all(f"remote.{name}.fetch")],
                    push_refspecs=[RefSpec.parse(spec) for spec in self.config_get_all(f"remote.{name}.push")],
                )
            self._remotes = remotes
        return self._remotes

    def remote_branch_of(self, tracking: RemoteTrackingBranch) -> Optional[RemoteBranch]:
        """Which branch on which remote a remote-tracking branch mirrors."""
        for remote in self.remotes().values():
            refname = remote.from_tracking(tracking.refname)
            if refname is not None:
                return RemoteBranch(remote=remote.name, refname=refname)
        return None

    def tracking_of(self, remote_branch: RemoteBranch) -> Optional[RemoteTrackingBranch]:
        """The remote-tracking branch mirroring ``remote_branch``, if it is fetched."""
        remote = self.remotes().get(remote_branch.remote)
        if remote is None:
            return None
        tracking = remote.to_tracking(remote_branch.refname)
        if tracking is None or not self.ref_exists(tracking):
            return None
        return RemoteTrackingBranch(tracking)

    def remote_heads(self, remote: str) -> set[str]:
        """Branch refnames that exist on a remote or URL right now."""
        if remote not in self._remote_heads:
            logger.debug("ls-remote --heads %s", remote)
            try:
                output = self.repo.git.ls_remote("--heads", remote)
            except GitCommandError as err:
                raise GitError(f"Failed to list heads of {remote}: {err}") from err
            self._remote_heads[remote] = {line.split("\t", 1)[1] for line in output.splitlines() if "\t" in line}
        return self._remote_heads[remote]

    # -- upstreams --------------------------------------------------------

    def upstream_config(self, refname: str) -> tuple[Optional[str], Optional[str]]:
        """Raw ``branch.<name>.remote`` and ``branch.<name>.merge``."""
        name = LocalBranch(refname).short_name
        return self.config_get(f"branch.{name}.remote"), self.config_get(f"branch.{name}.merge")

    def fetch_upstream(self, refname: str) -> Optional[RemoteTrackingBranch]:
        """Remote-tracking branch ``git pull`` would merge from."""
        remote_name, merge = self.upstream_config(refname)
        if not remote_name or not merge:
            return None
        remote = self.remotes().get(remote_name)
        if remote is None:
            return None
        tracking = remote.to_tracking(merge)
        if tracking is None or not self.ref_exists(tracking):
            return None
        return RemoteTrackingBranch(tracking)

    def push_upstream(self, refname: str) -> Optional[RemoteTrackingBranch]:
        """Remote-tracking branch ``git push`` would update, when it differs from the fetch upstream."""
        name = LocalBranch(refname).short_name
        fetch_remote, merge = self.upstream_config(refname)
        push_remote = (
            self.config_get(f"branch.{name}.pushRemote") or self.config_get("remote.pushDefault") or fetch_remote
        )
        if not push_remote:
            return None
        remote = self.remotes().get(push_remote)
        if remote is None:
            return None

        if remote.push_refspecs:
            destination = remote.push_destination(refname)
        else:
            push_default = (self.config_get("push.default") or "simple").lower()
            if push_default == "nothing":
                destination = None
            elif push_default in ("upstream", "tracking", "simple") and push_remote == fetch_remote and merge:
                destination = merge
            else:
                destination = refname
        if destination is None:
            return None

        tracking = remote.to_tracking(destination)
        if tracking is None or not self.ref_exists(tracking):
            return None
        fetch = self.fetch_upstream(refname)
        if fetch is not None and fetch.refname == tracking:
            return None
        return RemoteTrackingBranch(tracking)

    # -- merge detection --------------------------------------------------

    def _is_merged_by_rev_list(self, base: str, other: str) -> bool:
        try:
            output = self.repo.git.rev_list("--cherry-pick", "--right-only", "--no-merges", "-n1", f"{base}...{other}")
        except GitCommandError as err:
            raise GitError(f"Failed to compare {other} with {base}: {err}") from err
        return not output.strip()

    def is_squash_merged(self, base: str, refname: str) -> bool:
        """Whether ``refname`` landed on ``base`` as a single squashed commit.

        Builds a dangling commit holding the branch's tree on top of the merge
        base and checks whether an equivalent patch is already in ``base``.
        """
        try:
            merge_base = self.repo.git.merge_base(base, refname).strip()
        except GitCommandError:
            # unrelated histories
            return False
        try:
            tree = self.repo.git.rev_parse(f"{refname}^{{tree}}").strip()
            dangling = self.repo.git.commit_tree(
                tree, "-p", merge_base, "-m", "lopper: squash merge test", env=SQUASH_TEST_ENV
            ).strip()
        except GitCommandError as err:
            raise GitError(f"Failed to test squash merge of {refname}: {err}") from err
        return self._is_merged_by_rev_list(base, dangling)

    def is_merged(self, base: str, refname: str) -> bool:
        """Whether ``refname`` is merged into ``base`` by any means."""
        key = (self.commit_of(base), self.commit_of(refname))
        if key not in self._merged:
            self._merged[key] = self._is_merged_by_rev_list(base, refname) or self.is_squash_merged(base, refname)
        return self._merged[key]

    # -- updates ----------------------------------------------------------

    def last_fetch_age(self) -> Optional[float]:
        """Seconds since the last fetch, or None if the repository was never fetched."""
        fetch_head = Path(self.repo.git_dir) / "FETCH_HEAD"
        if not fetch_head.exists():
            return None
        return time.time() - os.path.getmtime(fetch_head)

    def fetch(self, remote_names: Optional[Iterable[str]] = None) -> None:
        """Fetch remotes and prune remote-tracking branches that disappeared."""
        names = list(remote_names) if remote_names is not None else list(self.remotes())
        try:
            for name in names:
                logger.info("Fetching %s", name)
                self.repo.git.fetch("--prune", name)
        except GitCommandError as err:
            raise GitError(f"Failed to fetch from remotes: {err}") from err
        finally:
            self.refresh()

    def delete_local_branches(self, refnames: Iterable[str]) -> list[str]:
        """Delete local branches. Returns the short names deleted."""
        names = [LocalBranch(refname).short_name for refname in refnames]
        if not names:
            return []
        try:
            self.repo.git.branch("-D", *names)
        except GitCommandError as err:
            raise GitError(f"Failed to delete local branches: {err}") from err
        finally:
            self.refresh()
        return names

    def delete_remote_branches(self, remote_branches: Iterable[RemoteBranch]) -> list[str]:
        """Delete branches on their remotes with one push per remote."""
        per_remote: dict[str, list[str]] = {}
        for remote_branch in remote_branches:
            per_remote.setdefault(remote_branch.remote, []).append(remote_branch.refname)

        deleted = []
        try:
            for remote, refnames in sorted(per_remote.items()):
                logger.info("Deleting %s on %s", ", ".join(refnames), remote)
                self.repo.git.push("--delete", remote, *sorted(refnames))
                deleted.extend(str(RemoteBranch(remote, refname)) for refname in sorted(refnames))
        except GitCommandError as err:
            raise GitError(f"Failed to delete remote branches: {err}") from err
        finally:
            self.refresh()
        return deleted

    def detach_head(self) -> None:
        try:
            self.repo.git.checkout("--detach")
        except GitCommandError as err:
            raise GitError(f"Failed to detach HEAD: {err}") from err
