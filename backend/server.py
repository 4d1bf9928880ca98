from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database

from creditledger import __product__, __version__
from creditledger.errors import LedgerError
from creditledger.routes import account_router, admin_router, credits_router, webhooks_router

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong, please try again"
MAIL_DISPATCH_INTERVAL_SECONDS = int(os.getenv("MAIL_DISPATCH_INTERVAL_SECONDS", "60"))

scheduler = AsyncIOScheduler()


async def run_mail_dispatch():
    from creditledger.services.email_service import email_service
    try:
        await email_service.dispatch_pending()
    except Exception as e:
        logger.error(f"Mail dispatch job failed: {e}", exc_info=True)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {__product__} API")
    await database.connect()

    stripe_key = (os.environ.get("STRIPE_SECRET_KEY") or os.environ.get("STRIPE_API_KEY") or "").strip()
    if not stripe_key:
        logger.error("STRIPE_API_KEY / STRIPE_SECRET_KEY is not set. Credit checkout will fail.")
    else:
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", "test" if stripe_key.startswith("sk_test_") else "live")
    if not (os.environ.get("PLATFORM_AI_API_KEY") or "").strip():
        logger.warning("PLATFORM_AI_API_KEY is not set. Platform AI mode is unavailable.")

    # Outbox dispatcher
    scheduler.add_job(
        run_mail_dispatch,
        IntervalTrigger(seconds=MAIL_DISPATCH_INTERVAL_SECONDS),
        id="mail_dispatch",
        name="Mail Outbox Dispatch",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info(f"Shutting down {__product__} API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title=f"{__product__} API",
    description="Credit ledger and AI provider resolution",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(account_router)
app.include_router(credits_router)
app.include_router(webhooks_router)
app.include_router(admin_router)

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    request_id = str(uuid.uuid4())
    if exc.status_code >= 500:
        logger.warning(f"{exc.error_code} request_id={request_id}: {exc.message}")
    detail = exc.to_detail()
    detail["request_id"] = request_id
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


def jsonable_errors(errors):
    return [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.info(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    request_id = str(uuid.uuid4())
    logger.error(f"Unhandled exception request_id={request_id}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": {"error_code": "INTERNAL_ERROR", "message": GENERIC_ERROR_MESSAGE, "request_id": request_id}}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
