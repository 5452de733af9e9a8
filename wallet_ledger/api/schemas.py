"""
Pydantic schemas for API requests

Amounts and ids are accepted loosely here and validated by the engine, so
that a bad amount is reported as a ledger validation error.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field


class FundRequest(BaseModel):
    amt: Any = Field(None, description="Amount to deposit, decimal string or number")


class PayRequest(BaseModel):
    to: Optional[str] = Field(None, description="Recipient username")
    amt: Any = Field(None, description="Amount to transfer, decimal string or number")


class BuyRequest(BaseModel):
    product_id: Any = Field(None, description="Catalog product id")
