"""OAuth login: signed state, deep-link callback coordination, auth client."""

from .callback import CallbackCoordinator, CallbackWaiter, OAuthCallbackResult
from .client import AuthServiceClient, generate_pkce
from .login import LoginFlow
from .state import generate_secure_state, validate_state_signature

__all__ = [
    "CallbackCoordinator",
    "CallbackWaiter",
    "OAuthCallbackResult",
    "AuthServiceClient",
    "generate_pkce",
    "LoginFlow",
    "generate_secure_state",
    "validate_state_signature",
]
