from .admin import AdminClient
from .identity_provider import IdentityProviderClient

__all__ = ["AdminClient", "IdentityProviderClient"]
