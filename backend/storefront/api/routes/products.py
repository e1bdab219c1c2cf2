"""
Digital product endpoints: purchased library, signed download links, and
the download redirect itself.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.session import get_db
from storefront.schemas.product import PurchasedProductResponse, DownloadLinkResponse, DownloadHistoryEntry
from storefront.services.download_service import (
    issue_download_link,
    authorize_download,
    get_user_purchased_products,
    get_download_history,
)
from storefront.core.security import get_current_user_id

router = APIRouter(prefix="/products", tags=["Products"])


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


@router.get("/purchased", response_model=list[PurchasedProductResponse])
async def list_purchased_products(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_user_purchased_products(db, user_id)


@router.post("/{product_id}/download-link", response_model=DownloadLinkResponse)
async def create_download_link(
    product_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Mint a signed link valid for DOWNLOAD_TOKEN_TTL_MINUTES."""
    link = await issue_download_link(db, user_id, product_id)
    return DownloadLinkResponse(
        url=link.url,
        token=link.token,
        expires_at=link.expires_at,
        downloads_remaining=link.downloads_remaining,
    )


@router.get("/{product_id}/download")
async def download_product(
    product_id: int,
    request: Request,
    token: str = Query(..., min_length=1, max_length=512),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Redirect to the file after verifying the link, ownership and download limit."""
    authorization = await authorize_download(
        db,
        user_id,
        product_id,
        token,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    response = RedirectResponse(authorization.file_url, status_code=status.HTTP_302_FOUND)
    response.headers["Cache-Control"] = "private, no-store"
    return response


@router.get("/{product_id}/downloads", response_model=list[DownloadHistoryEntry])
async def download_history(
    product_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_download_history(db, user_id, product_id)
