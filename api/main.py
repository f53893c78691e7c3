"""
Person Resolver - FastAPI Application Entry Point

Serves read access to the resolved person catalog:

    uvicorn api.main:app --host 0.0.0.0 --port 8000

Deduplication itself runs offline via scripts/dedupe_people.py.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import people
from config.settings import settings

logging.basicConfig(level=settings.log_level.upper(), format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Person Resolver",
    description="Person entity resolution over a noisy document corpus",
    version="0.1.0",
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(people.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (convert bytes to string)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies the catalog database is reachable."""
    from api.services.person_store import get_person_store

    checks = {}
    try:
        checks["person_count"] = get_person_store().count()
        checks["database"] = True
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        checks["database"] = False

    return {
        "status": "healthy" if checks["database"] else "degraded",
        "service": "person-resolver",
        "checks": checks,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
