"""Script-friendly output of a trim plan."""

import json
from enum import Enum
from typing import Any, TextIO

from lopper.branch import LocalBranch
from lopper.core import TrimPlan


class Porcelain(str, Enum):
    """Porcelain output modes."""

    LOCAL = "local"
    REMOTE = "remote"
    JSON = "json"


def print_local(plan: TrimPlan, out: TextIO) -> None:
    """Prints all locally to-be-deleted branches."""
    for name in sorted(LocalBranch(refname).short_name for refname in plan.to_delete.locals()):
        out.write(f"{name}\n")


def print_remote(plan: TrimPlan, out: TextIO) -> None:
    """Prints all remotely to-be-deleted branches as ``<remote>/<branch>``."""
    for name in sorted(str(remote_branch) for remote_branch in plan.to_delete.remotes()):
        out.write(f"{name}\n")


def plan_to_dict(plan: TrimPlan) -> dict[str, Any]:
    def remote_entry(remote_branch) -> dict[str, str]:
        return {"remote": remote_branch.remote, "refname": remote_branch.refname}

    to_delete = plan.to_delete
    return {
        "to_delete": {
            "merged_locals": sorted(to_delete.merged_locals),
            "stray_locals": sorted(to_delete.stray_locals),
            "merged_remotes": [remote_entry(rb) for rb in sorted(to_delete.merged_remotes)],
            "stray_remotes": [remote_entry(rb) for rb in sorted(to_delete.stray_remotes)],
        },
        "kept_back": {
            refname: {
                "original_classification": reason.original_classification.value,
                "message": reason.message,
            }
            for refname, reason in sorted(plan.kept_back.items())
        },
        "kept_back_remotes": [
            {
                **remote_entry(remote_branch),
                "original_classification": reason.original_classification.value,
                "message": reason.message,
            }
            for remote_branch, reason in sorted(plan.kept_back_remotes.items(), key=lambda item: item[0])
        ],
    }


def print_json(plan: TrimPlan, out: TextIO) -> None:
    json.dump(plan_to_dict(plan), out)
    out.write("\n")


PRINTERS = {
    Porcelain.LOCAL: print_local,
    Porcelain.REMOTE: print_remote,
    Porcelain.JSON: print_json,
}
