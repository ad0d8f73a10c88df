"""Branch classification and trim planning."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from fnmatch import fnmatch
from typing import Callable, Optional

from lopper.branch import HEADS_PREFIX, REMOTES_PREFIX, LocalBranch, RemoteBranch, RemoteTrackingBranch
from lopper.config import Config, DeleteFilter
from lopper.git import GitError, GitRepo

logger = logging.getLogger(__name__)


class Classification(Enum):
    """Why a branch was picked for deletion in the first place."""

    MERGED_LOCAL = "merged local"
    STRAY_LOCAL = "stray local"
    MERGED_REMOTE = "merged remote"
    STRAY_REMOTE = "stray remote"


@dataclass(frozen=True)
class Reason:
    """Why a deletable branch is preserved."""

    original_classification: Classification
    message: str


@dataclass
class MergedOrStray:
    """Branches to delete, by classification."""

    merged_locals: set[str] = field(default_factory=set)
    stray_locals: set[str] = field(default_factory=set)
    merged_remotes: set[RemoteBranch] = field(default_factory=set)
    stray_remotes: set[RemoteBranch] = field(default_factory=set)

    def accumulate(self, other: "MergedOrStray") -> "MergedOrStray":
        self.merged_locals |= other.merged_locals
        self.stray_locals |= other.stray_locals
        self.merged_remotes |= other.merged_remotes
        self.stray_remotes |= other.stray_remotes
        return self

    def normalize(self) -> "MergedOrStray":
        """A branch merged into any base is not stray."""
        self.stray_locals -= self.merged_locals
        self.stray_remotes -= self.merged_remotes
        return self

    def locals(self) -> list[str]:
        return sorted(self.merged_locals) + sorted(self.stray_locals)

    def remotes(self) -> list[RemoteBranch]:
        return sorted(self.merged_remotes) + sorted(self.stray_remotes)

    def __bool__(self) -> bool:
        return bool(self.merged_locals or self.stray_locals or self.merged_remotes or self.stray_remotes)


@dataclass
class UpstreamMergeState:
    upstream: RemoteTrackingBranch
    commit: str
    merged: bool


@dataclass
class ClassifiedBranch:
    """Outcome of classifying one local branch against one base."""

    refname: str
    branch_is_merged: bool
    fetch: Optional[UpstreamMergeState] = None
    push: Optional[UpstreamMergeState] = None
    messages: list[str] = field(default_factory=list)
    result: MergedOrStray = field(default_factory=MergedOrStray)

    def _remote_branch(self, repo: GitRepo, upstream: RemoteTrackingBranch) -> Optional[RemoteBranch]:
        remote_branch = repo.remote_branch_of(upstream)
        if remote_branch is None:
            logger.debug("%s: no remote maps to %s", self.refname, upstream.refname)
        return remote_branch

    def merged_remote(self, repo: GitRepo, upstream: RemoteTrackingBranch) -> None:
        remote_branch = self._remote_branch(repo, upstream)
        if remote_branch is not None:
            self.result.merged_remotes.add(remote_branch)

    def stray_remote(self, repo: GitRepo, upstream: RemoteTrackingBranch) -> None:
        remote_branch = self._remote_branch(repo, upstream)
        if remote_branch is not None:
            self.result.stray_remotes.add(remote_branch)

    def merged_or_stray_remote(self, repo: GitRepo, state: UpstreamMergeState) -> None:
        if state.merged:
            self.messages.append(f"upstream {state.upstream.short_name} is merged, but forgot to delete")
            self.merged_remote(repo, state.upstream)
        else:
            self.messages.append(f"upstream {state.upstream.short_name} is not merged")
            self.stray_remote(repo, state.upstream)


def classify(repo: GitRepo, base: str, refname: str, merged_locals: set[str]) -> ClassifiedBranch:
    """Classify a local branch that has an upstream configured."""
    commit = repo.commit_of(refname)
    branch_is_merged = refname in merged_locals or repo.is_merged(base, refname)

    fetch = None
    fetch_upstream = repo.fetch_upstream(refname)
    if fetch_upstream is not None:
        upstream_commit = repo.commit_of(fetch_upstream.refname)
        merged = (branch_is_merged and upstream_commit == commit) or repo.is_merged(base, fetch_upstream.refname)
        fetch = UpstreamMergeState(fetch_upstream, upstream_commit, merged)

    push = None
    push_upstream = repo.push_upstream(refname)
    if push_upstream is not None:
        upstream_commit = repo.commit_of(push_upstream.refname)
        merged = (
            (branch_is_merged and upstream_commit == commit)
            or (fetch is not None and fetch.merged and upstream_commit == fetch.commit)
            or repo.is_merged(base, push_upstream.refname)
        )
        push = UpstreamMergeState(push_upstream, upstream_commit, merged)

    c = ClassifiedBranch(refname=refname, branch_is_merged=branch_is_merged, fetch=fetch, push=push)

    if fetch is not None and push is not None:
        if branch_is_merged:
            c.messages.append("local is merged")
            c.result.merged_locals.add(refname)
            c.merged_or_stray_remote(repo, fetch)
            c.merged_or_stray_remote(repo, push)
        elif fetch.merged or push.merged:
            c.messages.append("some upstreams are merged, but the local strays")
            c.result.stray_locals.add(refname)
            c.merged_or_stray_remote(repo, push)
            c.merged_or_stray_remote(repo, fetch)

    elif fetch is not None or push is not None:
        upstream = fetch if fetch is not None else push
        if branch_is_merged:
            c.messages.append("local is merged")
            c.result.merged_locals.add(refname)
            c.merged_or_stray_remote(repo, upstream)
        elif upstream.merged:
            c.messages.append("upstream is merged, but the local strays")
            c.result.stray_locals.add(refname)
            c.merged_remote(repo, upstream.upstream)

    else:
        # No remote-tracking ref to look at. Either the upstream was deleted
        # and pruned, or branch.<name>.remote is a bare URL with no remote entry.
        remote, merge = repo.upstream_config(refname)
        if remote is None or merge is None:
            raise GitError(f"{refname} has no upstream configured")
        configured = repo.remotes().get(remote)
        if configured is not None and configured.to_tracking(merge) is not None:
            upstream_exists = False
        else:
            upstream_exists = merge in repo.remote_heads(remote)

        if upstream_exists and branch_is_merged:
            c.messages.append("merged local, merged remote: the branch is merged, but forgot to delete")
            c.result.merged_locals.add(refname)
            c.result.merged_remotes.add(RemoteBranch(remote=remote, refname=merge))
        elif branch_is_merged:
            c.messages.append("merged local: the branch is merged, and deleted")
            c.result.merged_locals.add(refname)
        elif not upstream_exists:
            c.messages.append("the branch is not merged but the remote is gone somehow")
            c.result.stray_locals.add(refname)
        else:
            c.messages.append("skip: the branch is alive")

    return c


@dataclass
class Base:
    """A base branch and the ref other branches are compared against."""

    name: str
    compare: str
    refs: set[str] = field(default_factory=set)


def resolve_bases(repo: GitRepo, names: list[str]) -> list[Base]:
    """Turn configured base names into refs that exist in this repository."""
    bases = []
    for name in names:
        local = LocalBranch.from_short_name(name).refname
        if repo.ref_exists(local):
            upstream = repo.fetch_upstream(local)
            refs = {local}
            # a fork pushes its base somewhere other than where it fetches from
            for tracking in (upstream, repo.push_upstream(local)):
                if tracking is not None:
                    refs.add(tracking.refname)
            bases.append(Base(name=name, compare=upstream.refname if upstream else local, refs=refs))
            continue

        tracking = name if name.startswith(REMOTES_PREFIX) else f"{REMOTES_PREFIX}{name}"
        if repo.ref_exists(tracking):
            bases.append(Base(name=name, compare=tracking, refs={tracking}))
            continue

        # only known remotely, e.g. "main" that was never checked out
        for remote in sorted(repo.remotes()):
            tracking = f"{REMOTES_PREFIX}{remote}/{name}"
            if repo.ref_exists(tracking):
                bases.append(Base(name=f"{remote}/{name}", compare=tracking, refs={tracking}))
    return bases


def _is_tracked(repo: GitRepo, refname: str) -> bool:
    remote, merge = repo.upstream_config(refname)
    return bool(remote) and remote != "." and bool(merge)


@dataclass
class TrimPlan:
    """What to delete, and what was kept back and why."""

    to_delete: MergedOrStray = field(default_factory=MergedOrStray)
    kept_back: dict[str, Reason] = field(default_factory=dict)
    kept_back_remotes: dict[RemoteBranch, Reason] = field(default_factory=dict)

    def _keep_locals(self, keep: Callable[[str], bool], message: str) -> None:
        for classification, refs in (
            (Classification.MERGED_LOCAL, self.to_delete.merged_locals),
            (Classification.STRAY_LOCAL, self.to_delete.stray_locals),
        ):
            for refname in sorted(refs):
                if keep(refname):
                    logger.debug("keep %s: %s", refname, message)
                    refs.discard(refname)
                    self.kept_back[refname] = Reason(classification, message)

    def _keep_remotes(self, keep: Callable[[RemoteBranch], bool], message: str) -> None:
        for classification, remotes in (
            (Classification.MERGED_REMOTE, self.to_delete.merged_remotes),
            (Classification.STRAY_REMOTE, self.to_delete.stray_remotes),
        ):
            for remote_branch in sorted(remotes):
                if keep(remote_branch):
                    logger.debug("keep %s: %s", remote_branch, message)
                    remotes.discard(remote_branch)
                    self.kept_back_remotes[remote_branch] = Reason(classification, message)

    def keep_base(self, repo: GitRepo, base_refs: set[str]) -> None:
        logger.debug("base refs: %s", sorted(base_refs))
        self._keep_locals(lambda refname: refname in base_refs, "a base branch")

        def is_base(remote_branch: RemoteBranch) -> bool:
            tracking = repo.tracking_of(remote_branch)
            return tracking is not None and tracking.refname in base_refs

        self._keep_remotes(is_base, "a base branch")

    def keep_protected(self, repo: GitRepo, patterns: list[str]) -> None:
        if not patterns:
            return
        logger.debug("protected patterns: %s", patterns)

        def matches(*names: str) -> bool:
            return any(fnmatch(name, pattern) for name in names for pattern in patterns)

        self._keep_locals(lambda refname: matches(refname, LocalBranch(refname).short_name), "a protected branch")

        def is_protected(remote_branch: RemoteBranch) -> bool:
            names = [str(remote_branch), remote_branch.short_name, remote_branch.refname]
            tracking = repo.tracking_of(remote_branch)
            if tracking is not None:
                names.append(tracking.refname)
            return matches(*names)

        self._keep_remotes(is_protected, "a protected branch")

    def keep_non_heads_remotes(self) -> None:
        """Keep refs such as pull request heads that live outside refs/heads/."""
        self._keep_remotes(lambda rb: not rb.refname.startswith(HEADS_PREFIX), "a non-heads remote branch")

    def apply_filter(self, delete: DeleteFilter) -> None:
        logger.debug("applying filter %s", delete)
        for classification, allowed, refs in (
            (Classification.MERGED_LOCAL, delete.filter_merged_local(), self.to_delete.merged_locals),
            (Classification.STRAY_LOCAL, delete.filter_stray_local(), self.to_delete.stray_locals),
        ):
            if not allowed:
                for refname in refs:
                    self.kept_back[refname] = Reason(classification, "out of filter scope")
                refs.clear()

        for classification, allowed, remotes in (
            (Classification.MERGED_REMOTE, delete.filter_merged_remote, self.to_delete.merged_remotes),
            (Classification.STRAY_REMOTE, delete.filter_stray_remote, self.to_delete.stray_remotes),
        ):
            for remote_branch in sorted(remotes):
                if not allowed(remote_branch.remote):
                    remotes.discard(remote_branch)
                    self.kept_back_remotes[remote_branch] = Reason(classification, "out of filter scope")

    def adjust_not_to_detach(self, repo: GitRepo) -> None:
        head = repo.head_refname()
        if head is None:
            return
        self._keep_locals(lambda refname: refname == head, "not to make detached HEAD")


def build_plan(repo: GitRepo, config: Config) -> TrimPlan:
    """Classify every branch against every base and decide what to delete."""
    bases = resolve_bases(repo, config.bases)
    if not bases:
        raise GitError(f"No base branch found (looked for {', '.join(config.bases)})")
    logger.info("Bases: %s", ", ".join(f"{base.name} ({base.compare})" for base in bases))

    base_refs: set[str] = set().union(*(base.refs for base in bases))
    local_branches = repo.local_branches()

    upstream_refs = set(base_refs)
    for refname in local_branches:
        for upstream in (repo.fetch_upstream(refname), repo.push_upstream(refname)):
            if upstream is not None:
                upstream_refs.add(upstream.refname)

    result = MergedOrStray()
    for base in bases:
        merged_locals = repo.merged_locals(base.compare)
        for refname in local_branches:
            if _is_tracked(repo, refname):
                c = classify(repo, base.compare, refname, merged_locals)
                for message in c.messages:
                    logger.debug("%s vs %s: %s", LocalBranch(refname).short_name, base.name, message)
                result.accumulate(c.result)
            elif refname in merged_locals or repo.is_merged(base.compare, refname):
                logger.debug("%s vs %s: non-tracking local is merged", LocalBranch(refname).short_name, base.name)
                result.merged_locals.add(refname)

        for tracking in repo.remote_tracking_branches():
            if tracking in upstream_refs:
                continue
            if repo.is_merged(base.compare, tracking):
                remote_branch = repo.remote_branch_of(RemoteTrackingBranch(tracking))
                if remote_branch is not None:
                    logger.debug("%s vs %s: remote-tracking branch is merged", tracking, base.name)
                    result.merged_remotes.add(remote_branch)

    plan = TrimPlan(to_delete=result.normalize())
    plan.keep_base(repo, base_refs)
    plan.keep_protected(repo, config.protected)
    plan.keep_non_heads_remotes()
    plan.apply_filter(config.delete)
    if not config.detach:
        plan.adjust_not_to_detach(repo)
    return plan


def execute_plan(repo: GitRepo, plan: TrimPlan, detach: bool = True) -> list[str]:
    """Delete what the plan says. Returns display names of deleted branches."""
    locals_to_delete = plan.to_delete.locals()
    head = repo.head_refname()
    checked_out = head is not None and head in locals_to_delete
    if checked_out and not detach:
        raise GitError(f"Refusing to delete {LocalBranch(head).short_name}: it is checked out")

    deleted = repo.delete_remote_branches(plan.to_delete.remotes())
    if checked_out:
        logger.info("Detaching HEAD from %s", LocalBranch(head).short_name)
        repo.detach_head()
    deleted.extend(repo.delete_local_branches(locals_to_delete))
    return deleted
