"""Secure Credentials Meta information.
   Secure Credentials keeps domain credentials in a password-protected,
   encrypted-at-rest vault.
"""
__title__ = 'secure_credentials'
__description__ = (
   'Secure Credentials keeps domain credentials in a password-protected '
   'vault, encrypted at rest.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Secure Credentials Developers'
__author__ = 'Secure Credentials Developers'
__author_email__ = 'maintainers@secure-credentials.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/secure-credentials/secure-credentials'
