"""Git branch trimming tool.

Features:
- Delete local branches merged into a base branch, including squash and rebase merges
- Delete their upstreams on the remotes in the same run
- Find stray branches whose upstream is gone, or whose upstream outlived a merged local
- Branch protection patterns and a delete filter, configurable through git config
- Porcelain output (local, remote, json) for scripts
"""

__version__ = "0.3.0"
