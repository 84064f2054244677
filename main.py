# =============================================================================
# 🚀 Check-in Ledger – main application (main.py)
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import FastAPI

from database import engine
from routes import checkin
from utils.checkin_config import settings
from utils.checkin_tables import ensure_checkin_tables

# -------------------------------------------------------------------------
# 1️⃣ Logging
# -------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


# -------------------------------------------------------------------------
# 2️⃣ FastAPI App
# -------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_checkin_tables(engine)
    yield
    engine.dispose()


app = FastAPI(title="Check-in Ledger", version="1.0", lifespan=lifespan)

# -------------------------------------------------------------------------
# 3️⃣ Routes
# -------------------------------------------------------------------------
app.include_router(checkin.router)


@app.get("/health")
def health() -> Dict[str, object]:
    return {"ok": True, "undoWindowSeconds": settings.undo_window.total_seconds()}


# -------------------------------------------------------------------------
# 4️⃣ Debug Route
# -------------------------------------------------------------------------
@app.get("/debug/routes")
def debug_routes() -> List[Dict[str, str]]:
    # newer FastAPI versions also list included routers, which have no path
    return [
        {"path": r.path, "name": getattr(r, "name", None) or ""}
        for r in app.routes
        if getattr(r, "path", None)
    ]
