"""Abstract authorization provider interface (port)."""

from abc import ABC, abstractmethod

from rdfrepo.domain.entities.query_fragment import QueryFragment


class AuthorizationProvider(ABC):
    """Port for access control — restricts the ids visible to the current user.

    The fragment is appended verbatim after ``SELECT id FROM (<filter>) t``,
    e.g. ``WHERE EXISTS (SELECT 1 FROM ... WHERE id = t.id AND ...)``.
    """

    @abstractmethod
    def metadata_auth_query(self) -> QueryFragment:
        ...
