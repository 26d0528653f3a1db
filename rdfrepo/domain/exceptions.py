"""Domain-specific exceptions — framework-independent.

Every error carries an HTTP-equivalent ``status_code`` so the presentation
layer can map it without inspecting the message.
"""


class RepoLibError(Exception):
    """Base class for all repository library errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class MalformedConditionError(RepoLibError):
    """Raised when a search condition cannot be constructed or compiled."""

    status_code = 400


class BadQueryError(RepoLibError):
    """Raised when the database rejects a generated query.

    The driver exception is chained as ``__cause__`` and never re-raised as such.
    """

    status_code = 400

    def __init__(self, message: str = "Bad query"):
        super().__init__(message)


class BadMetadataModeError(RepoLibError):
    """Raised for an unknown or malformed metadata read mode."""

    status_code = 400

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"Bad metadata mode {mode}")


class NotFoundError(RepoLibError):
    """Raised when no repository resource matches the given identifiers."""

    status_code = 404

    def __init__(self, ids: list[str] | None = None):
        self.ids = ids or []
        super().__init__(f"No resource matches identifiers {self.ids}")


class AmbiguousMatchError(RepoLibError):
    """Raised when more than one repository resource matches the given identifiers."""

    status_code = 409

    def __init__(self, matches: list[str]):
        self.matches = matches
        super().__init__(f"Many resources match the search: {', '.join(matches)}")


class FacetConfigurationError(RepoLibError):
    """Raised when a facet descriptor is rejected at registration time."""

    status_code = 400

    def __init__(self, facet: str, reason: str):
        self.facet = facet
        self.reason = reason
        super().__init__(f"Facet '{facet}': {reason}")


class RepositoryConnectionError(RepoLibError):
    """Raised when the REST repository endpoint cannot be reached or fails."""

    status_code = 502

    def __init__(self, url: str, status_code: int | None, message: str):
        self.url = url
        self.upstream_status = status_code
        super().__init__(f"[{url}] {status_code}: {message}")
