# linkguard/routes/admin.py
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..models import PREVIEW_UNAVAILABLE_TITLE
from ..services.sanitize import sanitize_url
from ..services.security_scanner import link_visibility
from .dependencies import enforce_rate_limit, require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


class AuthRequest(BaseModel):
    password: Optional[str] = None


class RescanRequest(BaseModel):
    url: str
    link_id: Optional[str] = None


class LinkPreview(BaseModel):
    id: str
    url: str
    title: Optional[str] = None
    image: Optional[str] = None


class RefreshPreviewsRequest(BaseModel):
    links: List[LinkPreview] = []
    force: bool = False


def needs_refresh(link: LinkPreview) -> bool:
    return (
        not link.image
        or not link.title
        or link.title in (PREVIEW_UNAVAILABLE_TITLE, 'No Title')
    )


@router.post("/auth")
async def authenticate(request: AuthRequest, req: Request):
    enforce_rate_limit(req, "admin")

    authority = req.app.state.token_authority
    if not authority.enabled:
        raise HTTPException(status_code=503, detail="Admin authentication is not configured")

    if not request.password:
        return JSONResponse(status_code=400, content={"error": "Password required"})

    token = authority.authenticate(request.password)
    if token is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    return {"success": True, "token": token, "expires_in": authority.ttl_ms // 1000}


@router.get("/verify", dependencies=[Depends(require_admin)])
async def verify():
    return {"valid": True}


@router.post("/rescan", dependencies=[Depends(require_admin)])
async def rescan(request: RescanRequest, req: Request):
    url = sanitize_url(request.url)
    if url is None:
        return JSONResponse(status_code=400, content={"error": "Invalid URL format"})

    result = await req.app.state.security_scanner.scan(url)
    logger.info(f"Admin rescan of {url}: {result.status}")

    return {
        "success": True,
        "link_id": request.link_id,
        "security_status": result.status,
        "link_status": link_visibility(result.status),
        "scan": result.to_dict(),
    }


@router.post("/refresh-previews", dependencies=[Depends(require_admin)])
async def refresh_previews(request: RefreshPreviewsRequest, req: Request):
    """
    Re-fetch preview metadata for the supplied links. Links that already
    have a usable preview are skipped unless force is set.
    """
    fetcher = req.app.state.preview_fetcher
    delay = req.app.state.refresh_delay

    refreshed = skipped = failed = 0
    fetched = 0
    results = []

    for link in request.links:
        if not request.force and not needs_refresh(link):
            skipped += 1
            continue

        # Pause between fetches only; skipped links do not count
        if fetched and delay:
            await asyncio.sleep(delay)
        fetched += 1

        metadata = await fetcher.fetch_metadata(link.url)
        if metadata.available:
            refreshed += 1
            results.append({"id": link.id, "url": link.url, "status": "refreshed", "preview": metadata.to_dict()})
        else:
            failed += 1
            results.append({"id": link.id, "url": link.url, "status": "failed", "reason": "Could not fetch metadata"})

    logger.info(f"Preview refresh: {refreshed} refreshed, {skipped} skipped, {failed} failed")

    return {
        "success": True,
        "summary": {
            "total": len(request.links),
            "refreshed": refreshed,
            "skipped": skipped,
            "failed": failed,
        },
        "results": results,
    }
