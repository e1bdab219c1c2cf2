from storefront.schemas.event import (
    EventCreate, EventResponse, EventListResponse, CapacityResponse, CapacityUpdate,
)
from storefront.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from storefront.schemas.product import PurchasedProductResponse, DownloadLinkResponse, DownloadHistoryEntry

__all__ = [
    "EventCreate", "EventResponse", "EventListResponse", "CapacityResponse", "CapacityUpdate",
    "BookingCreate", "BookingResponse", "BookingCancelResponse",
    "PurchasedProductResponse", "DownloadLinkResponse", "DownloadHistoryEntry",
]
