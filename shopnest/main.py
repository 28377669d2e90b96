# shopnest/main.py
import os, logging, uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError

# Rate limiting
from slowapi.middleware import SlowAPIMiddleware
from slowapi.errors import RateLimitExceeded

from shopnest.db import check_db_health
from shopnest.rate_limit import limiter
from shopnest.accounts.auth_routes import router as auth_router
from shopnest.accounts.otp import StoreUnavailableError

# =========================
# Environment & Constants
# =========================
ALLOWED = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
API_VERSION = "v1"


# =========================
# Logging
# =========================
logger = logging.getLogger("shopnest")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

# =========================
# App Setup
# =========================
app = FastAPI(title="ShopNest Accounts API")
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)


# =========================
# Routes
# =========================
@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {
        "status": "ok",
        "version": API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **check_db_health(),
    }


# =========================
# Errors
# =========================
def error_json(code: str, message: str, status: int = 400, request_id: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "success": False,
            "message": message,
            "error": {"code": code, "message": message},
            "request_id": request_id or str(uuid.uuid4()),
        },
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input."
    first = errors[0]
    msg = str(first.get("msg", "Invalid input."))
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    field = first.get("loc", ("body",))[-1]
    return f"{field}: {msg}"


@app.exception_handler(HTTPException)
async def http_exc_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict):
        err = exc.detail.get("error", {"code": "HTTP_ERROR", "message": "Request error."})
        response = error_json(err.get("code", "HTTP_ERROR"), err.get("message", "Request error."), exc.status_code)
        if exc.headers:
            response.headers.update(exc.headers)
        return response
    return await http_exception_handler(request, exc)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_json("VALIDATION_ERROR", _validation_message(exc), 400)

@app.exception_handler(RateLimitExceeded)
async def ratelimit_handler(request: Request, exc: RateLimitExceeded):
    return error_json("RATE_LIMITED", "Too many requests. Please try again in a minute.", 429)

@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error("OTP store unavailable on %s: %s", request.url.path, exc)
    return error_json("SERVICE_UNAVAILABLE", "Service temporarily unavailable. Please try again.", 503)
