"""
Authentication and wallet system dependencies
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import WalletConfig, get_config
from ..engine import LedgerEngine
from ..rates import CurrencyApiRateSource, RateSource
from ..storage import LedgerStore, create_store


class WalletSystem:
    """Wallet ledger with its store and rate source initialized"""

    def __init__(
        self,
        config: Optional[WalletConfig] = None,
        store: Optional[LedgerStore] = None,
        rate_source: Optional[RateSource] = None
    ):
        self.config = config or get_config()
        self.store = store or create_store(
            self.config.database_url, pool_size=self.config.database_pool_size
        )
        self.rate_source = rate_source or CurrencyApiRateSource(
            url=self.config.rate_source_url,
            api_key=self.config.currency_api_key or None,
            timeout=self.config.rate_source_timeout
        )
        self.engine = LedgerEngine(self.store, self.rate_source, self.config)

    def close(self) -> None:
        self.rate_source.close()
        self.store.close()


# Global wallet system instance, created on first use
_wallet_system: Optional[WalletSystem] = None
_wallet_system_lock = threading.Lock()


# Dependency to get wallet system
def get_wallet_system() -> WalletSystem:
    global _wallet_system
    with _wallet_system_lock:
        if _wallet_system is None:
            _wallet_system = WalletSystem()
        return _wallet_system


# JWT Security
security = HTTPBearer(auto_error=False)


def issue_token(account_id: str, config: Optional[WalletConfig] = None) -> str:
    """Bearer token for an account, as minted by the identity provider"""
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": account_id,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours)
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: WalletSystem = Depends(get_wallet_system)
) -> str:
    """Dependency that validates the bearer token and returns the account id"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    account_id = payload.get("sub")
    if not account_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return account_id
