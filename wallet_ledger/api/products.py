"""
Products endpoints
"""

import asyncio

from fastapi import APIRouter, Depends

from .auth import WalletSystem, get_current_account, get_wallet_system
from .schemas import BuyRequest


router = APIRouter()


@router.get("/product")
async def list_products(system: WalletSystem = Depends(get_wallet_system)):
    """List the product catalog"""
    products = await asyncio.to_thread(system.store.list_products)
    return [product.to_dict() for product in products]


@router.post("/buy")
async def buy(
    request: BuyRequest,
    account_id: str = Depends(get_current_account),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Purchase a product with the caller's balance"""
    result = await asyncio.to_thread(system.engine.purchase, account_id, request.product_id)
    return result.to_dict()
