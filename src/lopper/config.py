"""Settings read from git config, overridable from the command line."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from lopper.git import GitRepo

SECTION = "lopper"
DEFAULT_BASES = ["develop", "main", "master"]
DEFAULT_DELETE = "merged:origin"
DEFAULT_UPDATE_INTERVAL = 5

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}

ALL_REMOTES = "*"
FILTER_KINDS = (
    "merged-local",
    "stray-local",
    "merged-remote",
    "stray-remote",
    "merged",
    "stray",
    "local",
    "remote",
    "all",
)


class ConfigError(ValueError):
    """Invalid configuration value."""


def split_list(values: Iterable[str]) -> list[str]:
    """Flatten comma separated values, dropping blanks and duplicates but keeping order."""
    result: list[str] = []
    for value in values:
        for item in value.split(","):
            item = item.strip()
            if item and item not in result:
                result.append(item)
    return result


def parse_bool(value: str, key: str = "") -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"Invalid boolean value for {key or 'option'}: {value!r}")


def parse_int(value: str, key: str = "") -> int:
    try:
        number = int(value.strip())
    except ValueError as err:
        raise ConfigError(f"Invalid integer value for {key or 'option'}: {value!r}") from err
    if number < 0:
        raise ConfigError(f"{key or 'option'} must not be negative: {value!r}")
    return number


@dataclass(frozen=True)
class DeleteFilter:
    """Which kinds of branches may be deleted.

    Remote scopes are remote names, or ``*`` for every remote.
    """

    merged_local: bool = False
    stray_local: bool = False
    merged_remote_scopes: frozenset[str] = frozenset()
    stray_remote_scopes: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, spec: str) -> "DeleteFilter":
        """Parse a filter such as ``merged-local,stray,remote:origin``."""
        merged_local = stray_local = False
        merged_remote: set[str] = set()
        stray_remote: set[str] = set()

        for token in split_list([spec]):
            kind, _, scope = token.partition(":")
            scope = scope.strip() or ALL_REMOTES
            kind = kind.strip().lower()
            if ":" in token and kind in ("merged-local", "stray-local", "local"):
                raise ConfigError(f"Local filter {kind!r} does not take a remote scope")

            if kind not in FILTER_KINDS:
                raise ConfigError(f"Unknown delete filter: {token!r}")

            if kind in ("merged-local", "merged", "local", "all"):
                merged_local = True
            if kind in ("stray-local", "stray", "local", "all"):
                stray_local = True
            if kind in ("merged-remote", "merged", "remote", "all"):
                merged_remote.add(scope)
            if kind in ("stray-remote", "stray", "remote", "all"):
                stray_remote.add(scope)

        return cls(
            merged_local=merged_local,
            stray_local=stray_local,
            merged_remote_scopes=frozenset(merged_remote),
            stray_remote_scopes=frozenset(stray_remote),
        )

    def filter_merged_local(self) -> bool:
        return self.merged_local

    def filter_stray_local(self) -> bool:
        return self.stray_local

    def filter_merged_remote(self, remote: str) -> bool:
        return ALL_REMOTES in self.merged_remote_scopes or remote in self.merged_remote_scopes

    def filter_stray_remote(self, remote: str) -> bool:
        return ALL_REMOTES in self.stray_remote_scopes or remote in self.stray_remote_scopes


@dataclass
class Config:
    """Resolved settings for one run."""

    bases: list[str] = field(default_factory=lambda: list(DEFAULT_BASES))
    protected: list[str] = field(default_factory=list)
    delete: DeleteFilter = field(default_factory=lambda: DeleteFilter.parse(DEFAULT_DELETE))
    update: bool = True
    update_interval: int = DEFAULT_UPDATE_INTERVAL
    confirm: bool = True
    detach: bool = True

    @classmethod
    def load(cls, repo: GitRepo, **overrides: Any) -> "Config":
        """Read ``lopper.*`` from git config. Keyword arguments that are not None win."""

        def pick(name: str, key: str, parse, default):
            override: Optional[Any] = overrides.get(name)
            if override is not None:
                return parse(override) if isinstance(override, str) else override
            value = repo.config_get(f"{SECTION}.{key}")
            return default if value is None else parse(value)

        def pick_list(name: str, key: str, default: list[str]) -> list[str]:
            override = overrides.get(name)
            if override is not None:
                return split_list([override] if isinstance(override, str) else override)
            values = repo.config_get_all(f"{SECTION}.{key}")
            return split_list(values) if values else list(default)

        return cls(
            bases=pick_list("bases", "bases", DEFAULT_BASES),
            protected=pick_list("protected", "protected", []),
            delete=pick("delete", "delete", DeleteFilter.parse, DeleteFilter.parse(DEFAULT_DELETE)),
            update=pick("update", "update", lambda v: parse_bool(v, "lopper.update"), True),
            update_interval=pick(
                "update_interval",
                "updateInterval",
                lambda v: parse_int(v, "lopper.updateInterval"),
                DEFAULT_UPDATE_INTERVAL,
            ),
            confirm=pick("confirm", "confirm", lambda v: parse_bool(v, "lopper.confirm"), True),
            detach=pick("detach", "detach", lambda v: parse_bool(v, "lopper.detach"), True),
        )
