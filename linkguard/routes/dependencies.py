# linkguard/routes/dependencies.py
import logging

from fastapi import HTTPException, Request

from ..services.rate_limiter import client_identity
from ..services.token_authority import TokenAuthority

logger = logging.getLogger(__name__)


def scope_limit(req: Request, scope: str) -> int:
    settings = req.app.state.settings
    return {
        "submit": settings.submit_rate_limit,
        "report": settings.report_rate_limit,
        "admin": settings.admin_rate_limit,
    }[scope]


def enforce_rate_limit(req: Request, scope: str) -> None:
    """Count this request against the caller's window; raises RateLimitExceeded"""
    req.app.state.rate_limiter.hit(client_identity(req), scope_limit(req, scope), scope)


def bearer_token(req: Request) -> str:
    header = req.headers.get('authorization') or ''
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer':
        return ''
    return token.strip()


def require_admin(req: Request) -> None:
    """Admin gate: rate limit first, then a valid Bearer token"""
    enforce_rate_limit(req, "admin")

    authority: TokenAuthority = req.app.state.token_authority
    if not authority.enabled:
        raise HTTPException(status_code=503, detail="Admin authentication is not configured")

    if not authority.verify(bearer_token(req)):
        logger.info("Rejected admin request with missing or invalid token")
        raise HTTPException(status_code=401, detail="Unauthorized")
