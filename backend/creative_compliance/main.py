"""
Creative Compliance Service - Main FastAPI Application

Checks retail creative layouts against retailer rules (Appendix B / Tesco)
and applies deterministic, AI-assisted fixes.
"""
import os
import asyncio
from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import structlog

from creative_compliance import __version__
from creative_compliance.routes import compliance
from creative_compliance.models import HealthResponse
from creative_compliance.services.retail_rules import RULES_DIR, DEFAULT_RETAILER
from creative_compliance.services.copy_rewriter import build_provider_chain

# Load environment variables from project root or backend directory
env_path = Path(__file__).parent.parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()  # Try default location

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("application_starting", version=__version__)

    if not RULES_DIR.is_dir():
        logger.warning("rules_dir_missing", rules_dir=str(RULES_DIR), using="defaults")
    else:
        logger.info("rules_dir_ready", rules_dir=str(RULES_DIR), default_retailer=DEFAULT_RETAILER)

    # The Ollama liveness check blocks, keep it off the event loop
    app.state.text_providers = tuple(await asyncio.to_thread(build_provider_chain))
    logger.info("rewrite_providers_ready", providers=[p.name for p in app.state.text_providers])

    yield

    app.state.text_providers = ()
    logger.info("application_shutting_down")


app = FastAPI(
    title="Creative Compliance Service",
    description="""
    Compliance checking and auto-fixing for retail media creatives.

    ## Features

    - **Check**: Detect rule violations in a scene (safe zones, font size,
      WCAG contrast, tag text, claims, prohibited words, disclaimer)
    - **Fix**: Apply one corrective action per violation on a copy of the scene
    - **Fix copy**: Rewrite marketing text through the configured text providers,
      with local sanitization as the last resort
    - **Rules**: Inspect the effective rule set for a retailer
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS configuration
cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if os.getenv("APP_ENV") == "production" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 error=str(exc),
                 path=request.url.path,
                 method=request.method)
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again."}
    )


# ValueError from the pipeline means the request itself is unusable
@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("bad_request", error=str(exc), path=request.url.path)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.include_router(compliance.router)


@app.get("/", response_model=HealthResponse)
async def health_check(providers=Depends(compliance.text_providers)):
    """
    Health check endpoint.

    Returns application status, version, and text provider availability.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        services={
            "rewrite_providers": [p.name for p in providers],
            "llm_available": bool(providers),
            "default_retailer": DEFAULT_RETAILER,
            "rules_dir": str(RULES_DIR)
        }
    )


@app.get("/api/info")
async def api_info():
    """Get API information and available endpoints."""
    return {
        "name": "Creative Compliance Service API",
        "version": __version__,
        "endpoints": {
            "health": "GET /",
            "compliance": {
                "check": "POST /compliance/check",
                "fix": "POST /compliance/fix",
                "fix_copy": "POST /compliance/fix-copy",
                "rules": "GET /compliance/rules"
            },
            "docs": "GET /docs"
        }
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "0.0.0.0")

    uvicorn.run(
        "creative_compliance.main:app",
        host=host,
        port=port,
        reload=os.getenv("APP_ENV") != "production"
    )
