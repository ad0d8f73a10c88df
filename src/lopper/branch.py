"""Branch reference types."""

from dataclasses import dataclass
from typing import Optional

HEADS_PREFIX = "refs/heads/"
REMOTES_PREFIX = "refs/remotes/"


@dataclass(frozen=True, order=True)
class LocalBranch:
    """A branch under refs/heads/."""

    refname: str

    @property
    def short_name(self) -> str:
        return self.refname[len(HEADS_PREFIX) :] if self.refname.startswith(HEADS_PREFIX) else self.refname

    @classmethod
    def from_short_name(cls, name: str) -> "LocalBranch":
        return cls(name if name.startswith(HEADS_PREFIX) else f"{HEADS_PREFIX}{name}")


@dataclass(frozen=True, order=True)
class RemoteBranch:
    """A ref as it exists on the remote side.

    ``remote`` is either a configured remote name or a raw URL.
    """

    remote: str
    refname: str

    @property
    def short_name(self) -> str:
        return self.refname[len(HEADS_PREFIX) :] if self.refname.startswith(HEADS_PREFIX) else self.refname

    def __str__(self) -> str:
        return f"{self.remote}/{self.short_name}"


@dataclass(frozen=True, order=True)
class RemoteTrackingBranch:
    """A branch under refs/remotes/."""

    refname: str

    @property
    def short_name(self) -> str:
        return self.refname[len(REMOTES_PREFIX) :] if self.refname.startswith(REMOTES_PREFIX) else self.refname


@dataclass(frozen=True)
class RefSpec:
    """A fetch or push refspec such as ``+refs/heads/*:refs/remotes/origin/*``."""

    src: str
    dst: str
    force: bool = False

    @classmethod
    def parse(cls, spec: str) -> "RefSpec":
        force = spec.startswith("+")
        if force:
            spec = spec[1:]
        src, _, dst = spec.partition(":")
        return cls(src=src, dst=dst, force=force)

    @staticmethod
    def match(pattern: str, name: str) -> Optional[str]:
        """Return what ``*`` matched in ``pattern``, "" for an exact match, else None."""
        if "*" not in pattern:
            return "" if pattern == name else None
        prefix, _, suffix = pattern.partition("*")
        if name.startswith(prefix) and name.endswith(suffix) and len(name) >= len(prefix) + len(suffix):
            return name[len(prefix) : len(name) - len(suffix)]
        return None

    @staticmethod
    def _expand(pattern: str, star: str) -> str:
        return pattern.replace("*", star, 1) if "*" in pattern else pattern

    def map_src(self, name: str) -> Optional[str]:
        """Map a source ref to its destination."""
        if not self.dst:
            return None
        star = self.match(self.src, name)
        return None if star is None else self._expand(self.dst, star)

    def map_dst(self, name: str) -> Optional[str]:
        """Map a destination ref back to its source."""
        if not self.dst:
            return None
        star = self.match(self.dst, name)
        return None if star is None else self._expand(self.src, star)
