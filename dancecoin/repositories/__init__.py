# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .ledger_repository import LedgerRepository
from .wallet_repository import WalletRepository
from .redemption_key_repository import RedemptionKeyRepository
from .commission_repository import CommissionRepository

__all__ = [
    "BaseRepository",
    "LedgerRepository",
    "WalletRepository",
    "RedemptionKeyRepository",
    "CommissionRepository",
]
