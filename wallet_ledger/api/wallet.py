"""
Wallet endpoints: fund, pay, balance and statement
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .auth import WalletSystem, get_current_account, get_wallet_system
from .schemas import FundRequest, PayRequest


router = APIRouter()

# Engine calls run in a worker thread: a client disconnect cancels the await,
# never the atomic unit itself.


@router.post("/fund")
async def fund(
    request: FundRequest,
    account_id: str = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Deposit into the caller's account"""
    balance = await asyncio.to_thread(system.engine.deposit, account_id, request.amt)
    return {"balance": str(balance)}


@router.post("/pay")
async def pay(
    request: PayRequest,
    account_id: str = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Transfer to another account by username"""
    balance = await asyncio.to_thread(system.engine.transfer, account_id, request.to, request.amt)
    return {"balance": str(balance)}


@router.get("/bal")
async def balance(
    currency: Optional[str] = Query(None, description="Target currency code, defaults to INR"),
    account_id: str = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Current balance, optionally converted"""
    result = await asyncio.to_thread(system.engine.get_balance, account_id, currency)
    return result.to_dict()


@router.get("/stmt")
async def statement(
    limit: Optional[int] = Query(None, description="Page size"),
    cursor: Optional[str] = Query(None, description="next_cursor from the previous page"),
    account_id: str = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Ledger history, newest first"""
    page = await asyncio.to_thread(system.engine.get_history, account_id, limit, cursor)
    return page.to_dict()
