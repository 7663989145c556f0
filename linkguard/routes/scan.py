# linkguard/routes/scan.py
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..models import ScanResult
from ..services.sanitize import sanitize_input, sanitize_url
from ..services.security_scanner import link_visibility
from .dependencies import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


class ScanRequest(BaseModel):
    link_id: Optional[str] = None
    url: Optional[str] = None


@router.post("/scan")
async def scan(request: ScanRequest, req: Request):
    """
    Out-of-band security scan for an already stored link.

    The caller writes security_status back onto its link record and moves
    the link to link_status when that is pending_review.
    """
    enforce_rate_limit(req, "submit")

    if not request.link_id or not request.url:
        return JSONResponse(status_code=400, content={"error": "Missing link_id or url"})

    url = sanitize_url(request.url)
    if url is None:
        return JSONResponse(status_code=400, content={"error": "Invalid URL format"})

    link_id = sanitize_input(request.link_id)
    logger.info(f"[Security Scan] Starting scan for link {link_id}: {url}")

    try:
        result = await req.app.state.security_scanner.scan(url)
    except Exception as e:
        logger.error(f"[Security Scan] Scan crashed for link {link_id}: {type(e).__name__}: {e}")
        result = ScanResult.failed(type(e).__name__)

    status = link_visibility(result.status)

    logger.info(f"[Security Scan] Link {link_id}: {result.status} -> {status} ({result.duration_ms}ms)")

    return {
        "success": result.status != "error",
        "link_id": link_id,
        "security_status": result.status,
        "link_status": status,
        "scan": result.to_dict(),
    }
