"""
Wallet Ledger - platform-held balances with an append-only transaction log.
"""

from keymart.wallet._types import (
    DebitError,
    CreditError,
    TxKind,
    WalletTransaction,
    TransactionPage,
    AuditReport,
    WalletLedger,
)
from keymart.wallet._memory import MemoryWallet
from keymart.wallet._sqlalchemy import SQLAlchemyWallet

__all__ = (
    "DebitError",
    "CreditError",
    "TxKind",
    "WalletTransaction",
    "TransactionPage",
    "AuditReport",
    "WalletLedger",
    "MemoryWallet",
    "SQLAlchemyWallet",
)
