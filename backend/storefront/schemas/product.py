"""
Pydantic schemas for digital products and download links.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class PurchasedProductResponse(BaseModel):
    product_id: int
    title: str
    slug: str
    product_type: str
    price: Decimal
    order_id: int
    purchase_date: datetime
    download_count: int
    download_limit: int


class DownloadLinkResponse(BaseModel):
    url: str
    token: str
    expires_at: int  # epoch milliseconds
    downloads_remaining: int


class DownloadHistoryEntry(BaseModel):
    downloaded_at: datetime
    ip_address: Optional[str]

    model_config = {"from_attributes": True}
