"""Public redirect surface: /go/{code} records a click and forwards the visitor."""

import time
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models import TrackingLink
from app.services.click_ledger import ClickIdentifiers, ClickLedger
from app.services.exceptions import LinkNotFoundError

router = APIRouter(prefix="/go", tags=["redirect"])

CLICK_ID_PARAM = "sp_click"
LINK_COOKIE = "sp_tracking_link"
CLICK_COOKIE = "sp_click_id"


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _fbc(request: Request) -> str | None:
    """Existing _fbc cookie, or one derived from an fbclid on the landing URL."""
    cookie = request.cookies.get("_fbc")
    if cookie:
        return cookie
    fbclid = request.query_params.get("fbclid")
    if fbclid:
        return f"fb.1.{int(time.time() * 1000)}.{fbclid}"
    return None


def identifiers_from_request(request: Request) -> ClickIdentifiers:
    return ClickIdentifiers(
        client_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referrer_url=request.headers.get("referer"),
        fbp=request.cookies.get("_fbp"),
        fbc=_fbc(request),
        ttclid=request.query_params.get("ttclid"),
    )


def build_destination(link: TrackingLink, click_id: str) -> str:
    """Destination URL with the link's utm labels and the click id appended."""
    parts = urlsplit(link.destination_url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(
        {
            "utm_source": link.utm_source,
            "utm_medium": link.utm_medium,
            "utm_campaign": link.utm_campaign,
            CLICK_ID_PARAM: click_id,
        }
    )
    return urlunsplit(parts._replace(query=urlencode(params)))


@router.get("/{code}")
async def follow_tracking_link(
    code: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """Record the click, then 302 to the destination with the click id attached."""
    ledger = ClickLedger(db)
    try:
        click = await ledger.record_click(code, identifiers_from_request(request))
    except LinkNotFoundError:
        raise HTTPException(status_code=404, detail="Link not found")

    link = await db.get(TrackingLink, code)
    destination = build_destination(link, click.id)
    await db.commit()

    response = RedirectResponse(url=destination, status_code=302)
    max_age = settings.lookback_days * 24 * 60 * 60
    for name, value in ((LINK_COOKIE, code), (CLICK_COOKIE, click.id)):
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            domain=settings.click_cookie_domain,
            httponly=False,
            samesite="lax",
        )
    return response
