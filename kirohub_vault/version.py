"""KiroHub Vault Meta information.
   KiroHub Vault keeps multi-account credentials encrypted at rest,
   bound to the device they were stored on.
"""
__title__ = 'kirohub_vault'
__description__ = (
   'Device-bound encrypted credential vault with OAuth callback '
   'coordination and batch account import.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 KiroHub Contributors'
__author__ = 'KiroHub Contributors'
__author_email__ = 'dev@kirohub.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/kirohub/kirohub-vault'
