# linkguard/routes/captcha.py
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

router = APIRouter()


class CaptchaRequest(BaseModel):
    token: Optional[str] = None


@router.post("/verify-captcha")
async def verify_captcha(request: CaptchaRequest, req: Request):
    result = await req.app.state.captcha_verifier.verify(request.token)
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
