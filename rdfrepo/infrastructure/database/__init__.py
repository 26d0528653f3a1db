from .session import engine, async_session_factory, get_db_session
from .repo_db import RepoDb

__all__ = [
    "engine",
    "async_session_factory",
    "get_db_session",
    "RepoDb",
]
