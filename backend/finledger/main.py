"""finledger — FastAPI Application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from finledger.config import settings
from finledger.database import async_engine, init_models
from finledger.services.errors import LedgerError

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting finledger API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")

    if settings.DB_AUTO_CREATE:
        await init_models()
        logger.info("Database tables created")

    # Schedule jobs
    from finledger.services.reconciliation import run_scheduled_check

    scheduler.add_job(
        run_scheduled_check,
        "interval",
        hours=settings.RECONCILIATION_INTERVAL_HOURS,
        id="balance_reconciliation",
    )
    scheduler.start()
    logger.info("Scheduled jobs started (balance reconciliation)")

    logger.info("finledger API started successfully")
    yield

    # Shutdown
    scheduler.shutdown()
    await async_engine.dispose()
    logger.info("finledger API shut down")


app = FastAPI(
    title="finledger",
    description="Double-entry ledger for expenses, invoices, payments, refunds and vendor bills",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 409:
        logger.warning(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Import and register routers
from finledger.routes import auth, banking, finance, gl, reports, vendors

app.include_router(auth.router)
app.include_router(gl.router)
app.include_router(finance.router)
app.include_router(vendors.router)
app.include_router(banking.router)
app.include_router(reports.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "finledger API", "version": "1.0.0"}
