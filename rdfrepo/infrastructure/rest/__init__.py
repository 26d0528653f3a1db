"""REST repository client package."""

from .repo_rest import RejectAction, RepoRest

__all__ = [
    "RejectAction",
    "RepoRest",
]
