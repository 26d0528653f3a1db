from .auth_provider import AuthorizationProvider
from .metadata_source import MetadataSource

__all__ = [
    "AuthorizationProvider",
    "MetadataSource",
]
