"""FastAPI application entry point."""

import logging
import os
import threading

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from distill.errors import ServiceError
from distill.llm.errors import BudgetExceededError, LlmError, LlmProviderError
from distill.routes import classify, runs

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chat Distill",
    description="Run/job execution engine for auditable conversation distillation",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs.router)
app.include_router(classify.router)

# Worker thread management
worker_thread = None
worker_stop_event = threading.Event()


def error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def llm_error_status(error: LlmError) -> int:
    if isinstance(error, LlmProviderError):
        return 502
    if isinstance(error, BudgetExceededError):
        return 402
    return 400


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return error_response(exc.http_status, exc.code, exc.message, exc.details)


@app.exception_handler(LlmError)
async def llm_error_handler(request: Request, exc: LlmError):
    logger.warning(f"LLM error on {request.url.path}: {exc.code}")
    return error_response(llm_error_status(exc), exc.code, exc.message, exc.details)


def run_migrations():
    """Apply Alembic migrations unless the schema already exists."""
    from alembic import command
    from alembic.config import Config

    from distill.database import engine

    if "runs" in sqlalchemy.inspect(engine).get_table_names():
        logger.info("Database tables already exist, skipping migrations")
        return

    logger.info("Running database migrations...")
    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


def run_worker_loop():
    """Run the tick driver in a background thread."""
    from distill.worker import worker_loop
    logger.info("Starting background worker thread")
    worker_loop(worker_stop_event)


@app.on_event("startup")
async def startup_event():
    """Start the tick driver when the app starts."""
    global worker_thread
    logger.info("Starting application...")

    try:
        run_migrations()
    except Exception as e:
        logger.error(f"Startup migration error: {e}")
        logger.info("Continuing startup - assuming database is ready")

    worker_thread = threading.Thread(target=run_worker_loop, daemon=True)
    worker_thread.start()
    logger.info("Background worker thread started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the tick driver when the app shuts down."""
    logger.info("Shutting down application...")
    worker_stop_event.set()
    if worker_thread and worker_thread.is_alive():
        worker_thread.join(timeout=10)
        logger.info("Background worker thread stopped")


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}
