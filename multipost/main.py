import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from multipost.deps import init_db
from multipost.errors import MultipostError
from multipost.utils.helpers import utcnow
from multipost.utils.logging import get_logger, setup_logging

# Routers
from multipost.routers import users, settings, publish

setup_logging()
logger = get_logger(__name__)

app = FastAPI(title="Multipost API", version="0.1.0")

@app.on_event("startup")
def _startup():
    init_db()
    logger.info("app_startup")

@app.exception_handler(MultipostError)
async def _multipost_error(request: Request, exc: MultipostError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

@app.get("/health")
def health():
    return {"status": "ok", "timestamp": utcnow().isoformat()}

# Mount routes
app.include_router(users.router)       # /users/*
app.include_router(settings.router)    # /settings/*
app.include_router(publish.router)     # /publish

if __name__ == "__main__":
    uvicorn.run("multipost.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
