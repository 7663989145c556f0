# linkguard/routes/moderate.py
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..services.sanitize import sanitize_input, sanitize_url
from .dependencies import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


class ModerateRequest(BaseModel):
    url: Optional[str] = None
    message: Optional[str] = ""


@router.post("/moderate")
async def moderate(request: ModerateRequest, req: Request):
    """
    Pre-submission check. A response with safe=false must block the link
    from being stored.
    """
    enforce_rate_limit(req, "submit")

    url = sanitize_url(request.url)
    if url is None:
        return JSONResponse(status_code=400, content={"safe": False, "reason": "Invalid URL format"})

    classifier = req.app.state.classifier
    verdict = classifier.classify(url, request.message or "")

    if verdict.safe:
        verdict = await req.app.state.reputation_gateway.review(url)

    logger.info(f"Moderation verdict for {url}: safe={verdict.safe} source={verdict.source}")

    result = verdict.to_dict()
    if "reason" in result:
        result["reason"] = sanitize_input(result["reason"])
    return result
