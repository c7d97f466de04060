"""Coursegate Backend — content credential authority entry point.

Serves short-lived signed URLs for protected course media. Session records
are written directly by clients through the session store.
"""
from contextlib import asynccontextmanager
from pathlib import Path
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, APIRouter, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from typing import Optional

# Load env before anything else
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / ".env")

from config.settings import get_settings
from config.validators import validate_startup_config
from core.logging_config import setup_logging
from core.database import init_indexes, close_db
from core.exceptions import (
    AuthError,
    ContentNotFoundError,
    CoursegateError,
    CredentialDeniedError,
    StorageUrlError,
)
from auth.tokens import bearer_token, validate_token
from media.issuer import issue_access_credential
from observability.audit_log import log_audit_event
from schemas.access import SignedUrlRequest
from schemas.audit import AuditEventType

# ---- Setup logging ----
setup_logging()
logger = logging.getLogger(__name__)


# ---- Lifespan ----
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Coursegate BE starting — env=%s", settings.ENV)
    validate_startup_config(settings)
    await init_indexes()
    logger.info("Coursegate BE ready")
    yield
    await close_db()
    logger.info("Coursegate BE shutdown complete")


# ---- App ----
app = FastAPI(
    title="Coursegate Content Authority",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

api_router = APIRouter(prefix="/api")


# ---- Error mapping ----
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return _error(400, "Missing contentId or urlType")


@app.exception_handler(AuthError)
async def _auth_error(request: Request, exc: AuthError):
    return _error(401, exc.message)


@app.exception_handler(CredentialDeniedError)
async def _denied_error(request: Request, exc: CredentialDeniedError):
    return _error(exc.status_code, exc.message)


@app.exception_handler(ContentNotFoundError)
async def _not_found_error(request: Request, exc: ContentNotFoundError):
    return _error(404, exc.message)


@app.exception_handler(StorageUrlError)
async def _storage_url_error(request: Request, exc: StorageUrlError):
    return _error(400, exc.message)


@app.exception_handler(CoursegateError)
async def _coursegate_error(request: Request, exc: CoursegateError):
    logger.error("Unhandled %s: %s", exc.code, exc.message)
    return _error(500, "Internal server error")


# =====================================================
#  REST Endpoints
# =====================================================

# ---- Health ----
@api_router.get("/health")
async def health():
    settings = get_settings()
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": "0.1.0",
        "grant_ttl_s": settings.CONTENT_GRANT_TTL_S,
    }


# ---- Signed content URL ----
@api_router.post("/content/signed-url")
async def signed_content_url(
    req: SignedUrlRequest,
    authorization: Optional[str] = Header(None),
):
    """Authorize the caller for one content item and return a 30-minute URL."""
    try:
        claims = validate_token(bearer_token(authorization))
    except AuthError as e:
        await log_audit_event(AuditEventType.AUTH_FAILURE, details={"reason": e.message})
        raise

    issued = await issue_access_credential(claims.user_id, req.content_id, req.url_type)
    return issued.model_dump(mode="json", by_alias=True)


# Include REST router
app.include_router(api_router)
