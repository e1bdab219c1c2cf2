from storefront.models.user import User
from storefront.models.event import Event
from storefront.models.booking import Booking
from storefront.models.product import DigitalProduct
from storefront.models.order import Order, OrderItem
from storefront.models.download_log import DownloadLog

__all__ = ["User", "Event", "Booking", "DigitalProduct", "Order", "OrderItem", "DownloadLog"]
