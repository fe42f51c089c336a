"""Vault ledger package."""

from nami.ledger.vault_ledger import (
    InvalidVaultFlowError,
    VaultError,
    VaultLedger,
    VaultNotFoundError,
    sort_entries,
)

__all__ = [
    "InvalidVaultFlowError",
    "VaultError",
    "VaultLedger",
    "VaultNotFoundError",
    "sort_entries",
]
