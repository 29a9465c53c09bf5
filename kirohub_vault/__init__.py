"""KiroHub Vault.

Encrypted multi-account credential vault with OAuth callback coordination
and batch import.
"""
from .version import __version__
from .app import AppContext

__all__ = ["__version__", "AppContext"]
