# linkguard/main.py
import logging
import time
from typing import Any, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import GuardMode, Settings
from .routes import admin, captcha, moderate, preview, scan
from .services.captcha_verifier import CaptchaVerifier
from .services.heuristic_classifier import FilterRules, HeuristicClassifier
from .services.hostname_guard import HostnameGuard
from .services.rate_limiter import RateLimiter, RateLimitExceeded
from .services.reputation_gateway import ReputationGateway
from .services.security_scanner import SecurityScanner
from .services.token_authority import TokenAuthority
from .services.url_fetcher import SafeFetcher

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    ai_client: Optional[Any] = None,
) -> FastAPI:
    """
    Build the API with every service constructed once and attached to
    app.state. transport and ai_client replace the outbound HTTP transport
    and the OpenAI client (tests pass fakes here).
    """
    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = FastAPI(
        title="LinkGuard API",
        description="URL trust & safety checks for user-submitted links",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )

    # Previews honour the configured guard mode; vendor APIs are always
    # reached through a deny-list guard so an allow-list cannot cut them off
    guard = HostnameGuard(settings.guard_mode, settings.allowed_hosts)
    preview_fetcher = SafeFetcher(
        guard,
        timeout=settings.fetch_timeout,
        resolve_dns=settings.fetch_resolve_dns,
        contact_url=settings.fetch_contact_url,
        transport=transport,
    )
    api_fetcher = SafeFetcher(
        HostnameGuard(GuardMode.DENY_LIST),
        timeout=settings.scanner_timeout,
        resolve_dns=settings.fetch_resolve_dns,
        contact_url=settings.fetch_contact_url,
        transport=transport,
    )

    app.state.settings = settings
    app.state.guard = guard
    app.state.preview_fetcher = preview_fetcher
    app.state.api_fetcher = api_fetcher
    app.state.classifier = HeuristicClassifier(
        FilterRules.load(settings.filter_rules_path),
        whitelist_mode=settings.whitelist_mode,
    )
    app.state.reputation_gateway = ReputationGateway(
        settings, api_fetcher, ai_client=ai_client, timeout=settings.fetch_timeout
    )
    app.state.security_scanner = SecurityScanner.from_settings(settings, api_fetcher)
    app.state.token_authority = TokenAuthority(settings.admin_password)
    app.state.rate_limiter = RateLimiter()
    app.state.captcha_verifier = CaptchaVerifier(
        settings.recaptcha_secret_key, api_fetcher, min_score=settings.recaptcha_min_score
    )
    app.state.refresh_delay = 0.5

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing"""
        start_time = time.time()
        logger.info(f"Request: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(f"Response: {response.status_code} - {process_time:.3f}s")
        return response

    app.include_router(moderate.router, prefix="/api", tags=["moderation"])
    app.include_router(preview.router, prefix="/api", tags=["preview"])
    app.include_router(scan.router, prefix="/api", tags=["security"])
    app.include_router(captcha.router, prefix="/api", tags=["captcha"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

    @app.on_event("startup")
    async def startup_event():
        logger.info("🚀 LinkGuard API starting up...")
        logger.info(f"✅ Checks: {settings.describe()}")
        logger.info(f"✅ Classifier rules: {', '.join(app.state.classifier.rule_names)}")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("👋 LinkGuard API shutting down...")

    @app.get("/")
    async def root():
        return {
            "service": "LinkGuard API",
            "version": VERSION,
            "status": "healthy",
            "checks": settings.describe(),
            "endpoints": {
                "moderate": "/api/moderate",
                "preview": "/api/preview",
                "scan": "/api/scan",
                "verify_captcha": "/api/verify-captcha",
                "admin_auth": "/api/admin/auth",
            }
        }

    @app.get("/health")
    async def health():
        """Simple health check"""
        return {"status": "ok"}

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", "retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug else "An error occurred"
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "linkguard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
