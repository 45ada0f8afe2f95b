# ---- imports ----
import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from database import configured_engine
from routes import admin_analytics, analytics
from services.analytics_store import active_backend
from utils.config import SESSION_SECRET

# ✅ Logging config
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# --- Init ---

app = FastAPI(title="Site Analytics API")

# --- Routers ---
app.include_router(analytics.router)
app.include_router(admin_analytics.router)

# Middleware
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("❌ Validation error on %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


# --- DB Connection Test ---
def check_database() -> bool:
    engine = configured_engine()
    if engine is None:
        logger.info("No DATABASE_URL/POSTGRES_URL set; analytics will use the file store.")
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("✅ Database connected successfully.")
        return True
    except SQLAlchemyError as e:
        logger.warning("❌ Database connection failed, file fallback will be used: %s", e)
        return False


# --- Root Health Check ---
@app.get("/health")
def health_check():
    return {"status": "ok", "storage": active_backend()}


if __name__ == "__main__":
    check_database()
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
