# linkguard/routes/preview.py
import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter()


class PreviewRequest(BaseModel):
    url: Optional[str] = None


@router.post("/preview")
async def preview(request: PreviewRequest, req: Request):
    """Link preview metadata. Failures come back as the sentinel preview, never as an error status."""
    metadata = await req.app.state.preview_fetcher.fetch_metadata(request.url)
    return metadata.to_dict()
