"""Default settings for SecretVault Session.

Values here are fallbacks; ``VaultConfig.from_env()`` reads the
``VAULT_*`` environment variables on top of them.
"""

# Storage key of the persisted session record.
VAULT_SESSION_KEY = 'secretvault_session'

# Session validity (seconds).
SESSION_TTL = 24 * 60 * 60

# Delegation token validity (seconds).
DELEGATION_TTL = 60

DEFAULT_COLLECTION_NAME = 'user_bookmarks'
DEFAULT_BUILDER_NAME = 'BookmarkVaultBuilder'

# chain_url is reserved for the payment and subscription layer.
TESTNET = {
    'chain_url': 'http://rpc.testnet.nilchain-rpc-proxy.nilogy.xyz',
    'auth_url': 'https://nilauth.sandbox.app-cluster.sandbox.nilogy.xyz',
    'db_urls': [
        'https://nildb-stg-n1.nillion.network',
        'https://nildb-stg-n2.nillion.network',
        'https://nildb-stg-n3.nillion.network',
    ],
}

DEVNET = {
    'chain_url': 'https://chain.devnet.nillion.com',
    'auth_url': 'https://auth.devnet.nillion.com',
    'db_urls': [
        'https://db1.devnet.nillion.com',
        'https://db2.devnet.nillion.com',
    ],
}

NETWORKS = {
    'testnet': TESTNET,
    'devnet': DEVNET,
}

# Vault command namespace used in delegation and invocation tokens.
CMD_DATA_CREATE = '/nil/db/data/create'
CMD_DATA_READ = '/nil/db/data/read'
CMD_DATA_DELETE = '/nil/db/data/delete'
CMD_BUILDERS = '/nil/db/builders'
CMD_COLLECTIONS = '/nil/db/collections'
CMD_USERS = '/nil/db/users'
CMD_AUTH_ROOT = '/nil/auth/root'
