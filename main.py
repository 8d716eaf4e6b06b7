# FILE: main.py
"""
Patchgate Backend - FastAPI Application
Version: 0.3.0

Features:
- Namespace-aware placement of generated code into an existing codebase
- Method-level merge into existing source files
- Incremental rebuild of touched modules and their dependents
- Parallel verification of affected tests with breaking-change detection
- Persisted deployment records with one-shot rollback
"""
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from patchgate import __version__
from patchgate.db import init_db
from patchgate.deployment.router import router as deployment_router, get_config
from patchgate.deployment.tool_locator import ToolLocator

logging.basicConfig(
    level=os.getenv("PATCHGATE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("patchgate")

app = FastAPI(
    title="Patchgate",
    version=__version__,
    description="Deploys generated code into an existing codebase, builds and verifies it",
)

# ====== CORS ======

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:8000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    init_db()

    config = get_config()
    logger.info(
        f"[startup] build timeout={config.build_timeout_seconds}s, "
        f"test timeout={config.test_timeout_seconds}s, max parallel={config.max_parallel_test_modules}"
    )

    build_tool = ToolLocator(config.build_tool).locate()
    test_tool = ToolLocator(config.test_tool).locate()
    logger.info(f"[startup] Build tool: {'[OK] ' + build_tool if build_tool else '[X] NOT FOUND'}")
    logger.info(f"[startup] Test runner: {'[OK] ' + test_tool if test_tool else '[X] NOT FOUND'}")


# ====== ROUTERS ======

app.include_router(deployment_router)


# ====== PUBLIC ENDPOINTS ======

@app.get("/ping")
def ping():
    """Health check."""
    return {"status": "ok", "version": __version__}
