"""
Paywarden error types.

Every error carries a stable ``code`` so callers (CLI, web, tool front-ends)
can report it without parsing messages. Policy outcomes (deny, needs
approval) are results, not errors, and never appear here.
"""


class PaywardenError(Exception):
    """Base error for all Paywarden operations."""

    code = "internal_error"


class InvalidRequestError(PaywardenError, ValueError):
    """Input received from outside failed validation."""

    code = "invalid_request"


# Wallet errors
class WalletError(PaywardenError):
    """Base error for key vault failures."""

    code = "wallet_error"


class InvalidKeyFormatError(WalletError):
    """Key is not a 0x-prefixed 32-byte hex string."""

    code = "invalid_private_key"


class UnlockFailedError(WalletError):
    """Wrong passphrase or corrupt key file (deliberately indistinguishable)."""

    code = "unlock_failed"

    def __init__(self, message: str = "Unable to unlock wallet key"):
        super().__init__(message)


class WalletLockedError(WalletError):
    """An encrypted key exists on disk but is not unlocked in memory."""

    code = "wallet_locked"

    def __init__(self, message: str = "Wallet key is stored but locked. Unlock it before signing."):
        super().__init__(message)


class WalletNotConfiguredError(WalletError):
    """No key in memory and none persisted."""

    code = "wallet_not_configured"

    def __init__(self, message: str = "Wallet private key not set. Load a key first."):
        super().__init__(message)


# Selection errors
class SelectionError(PaywardenError):
    """Base error for payment requirement selection."""

    code = "selection_error"


class NoSupportedRequirementError(SelectionError):
    """None of the offered payment requirements can be handled."""

    code = "no_supported_requirement"


class UnsupportedNetworkError(SelectionError):
    """Network name does not resolve to a known chain id."""

    code = "unsupported_network"

    def __init__(self, network: str):
        self.network = network
        super().__init__(f"Unsupported network {network}")


# Signing errors
class SigningError(PaywardenError):
    """Base error for authorization building and signing."""

    code = "signing_failed"


class MissingTokenMetadataError(SigningError):
    """Requirement lacks extra.name / extra.version needed for the EIP-712 domain."""

    code = "missing_token_metadata"

    def __init__(self, message: str = "extra.name and extra.version are required for the EIP-712 domain"):
        super().__init__(message)


class SignatureError(SigningError):
    """EIP-712 signature creation failed."""

    code = "signing_failed"


# Policy errors
class PolicyValidationError(InvalidRequestError):
    """Policy document is malformed."""

    code = "invalid_policy"


# Audit errors
class AuditIntegrityError(PaywardenError, RuntimeError):
    """The audit log hash chain does not verify."""

    code = "audit_chain_broken"


# Storage errors
class StorageError(PaywardenError, RuntimeError):
    """Local state on disk is unreadable, malformed or cannot be written."""

    code = "storage_error"
