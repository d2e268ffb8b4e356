"""
All In One tools API: accounts, usage quotas, and Stripe billing.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Fails startup if migrations fail."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    if not os.getenv("DATABASE_URL"):
        logger.error("DATABASE_URL is not set. Alembic migrations will not run.")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.routes import auth, billing, stripe as stripe_router, usage, webhooks
from app.core.config import ConfigurationError, get_app_url
from app.db.init_db import init_db
from app.db.session import engine

app = FastAPI(title="All In One Tools API")


@app.on_event("startup")
def startup_event():
    """Create tables/indexes once, then bring the schema to Alembic head."""
    init_db(engine)
    run_migrations()


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_app_url(), "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz", tags=["Health"])
def healthz():
    return {"ok": True}


app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(usage.router, prefix="/api", tags=["Usage"])
app.include_router(billing.router, prefix="/api/billing", tags=["Billing"])
app.include_router(stripe_router.router, prefix="/api/stripe", tags=["Stripe"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
