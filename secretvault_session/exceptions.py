"""
Vault error taxonomy.

Every failure surfaced to callers is a :class:`VaultError` carrying an
:class:`ErrorCode`. Transport failures keep the HTTP status and body so the
provisioners can recognize "already exists" outcomes.
"""
from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Categories of vault failures."""

    MISSING_USER_ADDRESS = 'MISSING_USER_ADDRESS'
    BROWSER_REQUIRED = 'BROWSER_REQUIRED'
    MISSING_PRIVATE_KEY = 'MISSING_PRIVATE_KEY'
    KEYPAIR_CREATION_FAILED = 'KEYPAIR_CREATION_FAILED'
    CLIENT_INIT_FAILED = 'CLIENT_INIT_FAILED'
    COLLECTION_SETUP_FAILED = 'COLLECTION_SETUP_FAILED'
    CREATE_FAILED = 'CREATE_FAILED'
    READ_FAILED = 'READ_FAILED'
    DELETE_FAILED = 'DELETE_FAILED'
    UPDATE_NOT_IMPLEMENTED = 'UPDATE_NOT_IMPLEMENTED'
    BOOKMARK_NOT_FOUND = 'BOOKMARK_NOT_FOUND'
    INITIALIZATION_FAILED = 'INITIALIZATION_FAILED'
    VAULT_NOT_INITIALIZED = 'VAULT_NOT_INITIALIZED'
    SUBSCRIPTION_EXPIRED = 'SUBSCRIPTION_EXPIRED'
    REQUEST_FAILED = 'REQUEST_FAILED'


# Codes a caller may retry as-is.
RETRYABLE_CODES = frozenset({
    ErrorCode.CLIENT_INIT_FAILED,
    ErrorCode.CREATE_FAILED,
    ErrorCode.READ_FAILED,
    ErrorCode.DELETE_FAILED,
    ErrorCode.INITIALIZATION_FAILED,
    ErrorCode.REQUEST_FAILED,
})

_DUPLICATE_MARKERS = (
    'already exists',
    'already registered',
    'duplicate key',
    'duplicate_key',
    'e11000',
)

_DUPLICATE_CODES = frozenset({'DUPLICATE_KEY', 'DUPLICATE', 'E11000', '11000'})


class VaultError(Exception):
    """Base error for every vault operation."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INITIALIZATION_FAILED
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def __repr__(self) -> str:
        return f'<{type(self).__name__} code={self.code.value} message={self.message!r}>'


class VaultRequestError(VaultError):
    """A vault or auth node answered with an error, or could not be reached."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        url: Optional[str] = None
    ) -> None:
        super().__init__(message, ErrorCode.REQUEST_FAILED)
        self.status = status
        self.body = body
        self.url = url


class SubscriptionExpiredError(VaultError):
    """The builder subscription on the vault network is no longer active.

    Retrying does not help: a new subscription (or builder key) is needed.
    """

    def __init__(
        self,
        message: str = (
            'Your vault network subscription has expired. '
            'Renew the builder subscription or configure a new builder key.'
        )
    ) -> None:
        super().__init__(message, ErrorCode.SUBSCRIPTION_EXPIRED)


def _error_codes(body: Any) -> list[str]:
    """Collect structured error codes out of a response body."""
    codes: list[str] = []
    if isinstance(body, dict):
        for key in ('code', 'errorCode', 'error_code'):
            value = body.get(key)
            if value is not None:
                codes.append(str(value).upper())
        errors = body.get('errors')
        if isinstance(errors, list):
            for item in errors:
                codes.extend(_error_codes(item))
    return codes


def is_duplicate_error(err: BaseException) -> bool:
    """Tell whether ``err`` means the resource already exists remotely.

    Recognizes HTTP 409, structured duplicate-key codes in the response
    body, and the usual wording in the message or body text.
    """
    status = getattr(err, 'status', None)
    if status == 409:
        return True
    body = getattr(err, 'body', None)
    if any(code in _DUPLICATE_CODES for code in _error_codes(body)):
        return True
    text = f'{err} {body if body is not None else ""}'.lower()
    return any(marker in text for marker in _DUPLICATE_MARKERS)


def is_subscription_expired(status: Optional[int], body: Any) -> bool:
    """Tell whether an auth/vault response signals an expired subscription."""
    if status not in (401, 402, 403):
        return False
    if any('SUBSCRIPTION' in code for code in _error_codes(body)):
        return True
    text = str(body).lower()
    return 'subscription' in text and (
        'expired' in text or 'inactive' in text or 'not active' in text
    )
