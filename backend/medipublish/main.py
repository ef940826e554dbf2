# backend/medipublish/main.py

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medipublish.api.routes.cme import router as cme_router
from medipublish.config import settings
from medipublish.services.audit import AuditTrail
from medipublish.services.export import FileExportStore

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title=f"{settings.PROJECT_NAME} CME API",
    version="0.1.0",
)

# ---------------------------------------------------------
# CORS (tweak origins as needed)
# ---------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------
# Process-scoped collaborators, handed to routes via dependencies
# ---------------------------------------------------------
app.state.audit_trail = AuditTrail()
app.state.export_store = FileExportStore(settings.EXPORT_DIR)

# ---------------------------------------------------------
# Health check
# ---------------------------------------------------------
@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "service": "medipublish"}

# ---------------------------------------------------------
# CME routes
# ---------------------------------------------------------
app.include_router(cme_router, prefix="/cme", tags=["cme"])
