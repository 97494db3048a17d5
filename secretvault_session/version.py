"""SecretVault Session Meta information.
   SecretVault Session keeps a cached, persisted connection to a remote
   encrypted record vault and exposes owned-record operations over it.
"""
__title__ = 'secretvault_session'
__description__ = (
   'SecretVault Session provisions, caches and restores vault sessions '
   'for per-user encrypted records.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
