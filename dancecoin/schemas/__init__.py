from .auth import Principal, TokenPayload
from .coins import CoinErrorCode, CoinOperationResult, LedgerEntryResponse, WalletResponse
from .commission import CommissionResponse
from .redemption import RedemptionKeyResponse
