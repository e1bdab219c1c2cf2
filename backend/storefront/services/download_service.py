"""
Digital download delivery.

DELIVERY PROTOCOL
=================

issue_download_link():
  ownership check -> mint a signed grant (storefront.core.download_tokens)

authorize_download():
  1. Parse the token                                  -> InvalidTokenError
  2. Verify expiry + HMAC against the *caller's* user
     id and the *requested* product id                -> ExpiredTokenError / SignatureMismatchError
  3. Re-check ownership: a completed order by this
     user containing this product, locked FOR UPDATE  -> NotPurchasedError
  4. COUNT download_logs for (user, product, order)   -> DownloadLimitExceededError
  5. INSERT a download_logs row
  6. COMMIT, return the file location

Ownership is re-checked at delivery time so a refund issued after the link
was minted takes effect immediately.

Steps 3-5 share one transaction and the order row stays locked until the
commit, so concurrent downloads of the same purchase queue up behind each
other and the count-then-insert cannot exceed the limit. Downloads only
count once step 5 is reached; a rejected or failed request never consumes
an allowance.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func, and_
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import Order, OrderItem, ORDER_COMPLETED
from storefront.models.product import DigitalProduct
from storefront.models.download_log import DownloadLog
from storefront.core.config import get_settings
from storefront.core.download_tokens import mint_download_grant, parse_download_token, check_download_grant
from storefront.core.errors import (
    AppError,
    NotFoundError,
    NotPurchasedError,
    DownloadLimitExceededError,
    TransactionError,
)
from storefront.core.logging import get_logger
from storefront.core.metrics import record_download, download_links_issued
from storefront.services.booking_service import apply_lock_timeout

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class DownloadLink:
    url: str
    token: str
    expires_at: int
    downloads_remaining: int


@dataclass
class DownloadAuthorization:
    file_url: str
    product_id: int
    order_id: int
    downloads_used: int
    download_limit: int


async def get_product(db: AsyncSession, product_id: int) -> DigitalProduct:
    product = await db.scalar(select(DigitalProduct).where(DigitalProduct.id == product_id))
    if product is None:
        raise NotFoundError("Product", product_id=product_id)
    return product


async def find_completed_purchase(
    db: AsyncSession,
    user_id: int,
    product_id: int,
    order_id: Optional[int] = None,
    lock: bool = False,
) -> Optional[Order]:
    """
    Latest completed order by `user_id` that contains `product_id`.
    With `lock=True` the order row is held FOR UPDATE until commit/rollback.
    """
    query = (
        select(Order)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .where(
            Order.user_id == user_id,
            Order.status == ORDER_COMPLETED,
            OrderItem.digital_product_id == product_id,
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(1)
    )
    if order_id is not None:
        query = query.where(Order.id == order_id)
    if lock:
        query = query.with_for_update(of=Order).execution_options(populate_existing=True)
    return await db.scalar(query)


async def count_downloads(db: AsyncSession, user_id: int, product_id: int, order_id: int) -> int:
    total = await db.scalar(
        select(func.count(DownloadLog.id)).where(
            DownloadLog.user_id == user_id,
            DownloadLog.digital_product_id == product_id,
            DownloadLog.order_id == order_id,
        )
    )
    return total or 0


async def issue_download_link(db: AsyncSession, user_id: int, product_id: int) -> DownloadLink:
    """Mint a short-lived download link for a product the user has bought."""
    product = await get_product(db, product_id)
    order = await find_completed_purchase(db, user_id, product_id)
    if order is None:
        record_download(NotPurchasedError.code)
        logger.warning("download_link_denied", reason=NotPurchasedError.code, user_id=user_id, product_id=product_id)
        raise NotPurchasedError(user_id=user_id, product_id=product_id)

    used = await count_downloads(db, user_id, product_id, order.id)
    grant = mint_download_grant(product.id, order.id, user_id)
    download_links_issued.inc()
    logger.info(
        "download_link_issued",
        user_id=user_id,
        product_id=product_id,
        order_id=order.id,
        expires_at=grant.expires_at,
    )

    path = settings.PUBLIC_DOWNLOAD_PATH.format(product_id=product.id)
    return DownloadLink(
        url=f"{path}?token={grant.token}",
        token=grant.token,
        expires_at=grant.expires_at,
        downloads_remaining=max(product.download_limit - used, 0),
    )


async def authorize_download(
    db: AsyncSession,
    user_id: int,
    product_id: int,
    token: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[int] = None,
) -> DownloadAuthorization:
    """
    Validate a download request and record it.

    Returns the file location to redirect to. Every failure raises a
    DownloadError subclass; the specific subclass is logged but callers
    should only show its generic public message.
    """
    try:
        grant = parse_download_token(token)
        # The identifiers that matter come from the request, not the token.
        check_download_grant(product_id, grant.order_id, user_id, grant.expires_at, grant.digest, now=now)

        await apply_lock_timeout(db)
        product = await get_product(db, product_id)

        order = await find_completed_purchase(db, user_id, product_id, order_id=grant.order_id, lock=True)
        if order is None:
            raise NotPurchasedError(order_id=grant.order_id)

        used = await count_downloads(db, user_id, product_id, order.id)
        if used >= product.download_limit:
            raise DownloadLimitExceededError(product.download_limit, downloads_used=used)

        order_id = order.id
        file_url = product.file_url
        download_limit = product.download_limit

        db.add(
            DownloadLog(
                user_id=user_id,
                digital_product_id=product_id,
                order_id=order_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        await db.commit()

    except AppError as exc:
        await db.rollback()
        record_download(exc.code)
        logger.warning(
            "download_denied",
            **{"reason": exc.code, "user_id": user_id, "product_id": product_id, **exc.context},
        )
        raise
    except DBAPIError as exc:
        await db.rollback()
        record_download(TransactionError.code)
        logger.error("download_failed", user_id=user_id, product_id=product_id, error=str(exc.orig))
        raise TransactionError(str(exc.orig)) from exc

    record_download("authorized")
    logger.info(
        "download_authorized",
        user_id=user_id,
        product_id=product_id,
        order_id=order_id,
        downloads_used=used + 1,
        download_limit=download_limit,
    )
    return DownloadAuthorization(
        file_url=file_url,
        product_id=product_id,
        order_id=order_id,
        downloads_used=used + 1,
        download_limit=download_limit,
    )


async def get_user_purchased_products(db: AsyncSession, user_id: int) -> list[dict]:
    """Products bought through completed orders, with downloads used per order."""
    downloads = (
        select(
            DownloadLog.order_id,
            DownloadLog.digital_product_id,
            func.count(DownloadLog.id).label("download_count"),
        )
        .where(DownloadLog.user_id == user_id)
        .group_by(DownloadLog.order_id, DownloadLog.digital_product_id)
        .subquery()
    )

    result = await db.execute(
        select(
            DigitalProduct,
            Order.id.label("order_id"),
            Order.created_at.label("purchase_date"),
            func.coalesce(downloads.c.download_count, 0).label("download_count"),
        )
        .join(OrderItem, OrderItem.digital_product_id == DigitalProduct.id)
        .join(Order, Order.id == OrderItem.order_id)
        .outerjoin(
            downloads,
            and_(
                downloads.c.order_id == Order.id,
                downloads.c.digital_product_id == DigitalProduct.id,
            ),
        )
        .where(Order.user_id == user_id, Order.status == ORDER_COMPLETED)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )

    purchased = []
    for product, order_id, purchase_date, download_count in result.all():
        purchased.append({
            "product_id": product.id,
            "title": product.title,
            "slug": product.slug,
            "product_type": product.product_type,
            "price": product.price,
            "order_id": order_id,
            "purchase_date": purchase_date,
            "download_count": int(download_count),
            "download_limit": product.download_limit,
        })
    return purchased


async def get_download_history(db: AsyncSession, user_id: int, product_id: int) -> list[DownloadLog]:
    result = await db.execute(
        select(DownloadLog)
        .where(DownloadLog.user_id == user_id, DownloadLog.digital_product_id == product_id)
        .order_by(DownloadLog.downloaded_at.desc(), DownloadLog.id.desc())
    )
    return list(result.scalars().all())