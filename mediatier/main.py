"""FastAPI main application."""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import os
import logging
import traceback

from mediatier.config import init_config
from mediatier.db.database import init_db
from mediatier.api.routes import router
from mediatier.dependencies import init_runtime

# Setup logging (level from config after init)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def find_config_path() -> str:
    """Support both /config/config.yaml (Docker) and ./config/config.yaml (local dev)."""
    config_path = os.getenv("CONFIG_PATH", "/config/config.yaml")
    possible_paths = [
        config_path,
        "/config/config.yaml",
        "./config/config.yaml",
        os.path.join(os.path.dirname(__file__), "..", "config", "config.yaml"),
    ]
    for path in possible_paths:
        if os.path.exists(path):
            return path

    error_msg = f"""
ERROR: Configuration file not found!

Tried the following paths:
{chr(10).join(f'  - {p}' for p in possible_paths)}

Please ensure:
1. The config directory is mounted in Docker: -v ./config:/config:ro
2. The file config/config.yaml exists (copy from config.example.yaml)
3. The CONFIG_PATH environment variable points to the correct file
"""
    logger.error(error_msg)
    raise FileNotFoundError(error_msg)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config_path = find_config_path()
    logger.info(f"Loading configuration from: {config_path}")
    config = init_config(config_path)
    logging.getLogger().setLevel(config.app.log_level.upper())

    # Initialize database
    data_dir = os.getenv("DATA_DIR", config.app.data_dir)
    try:
        init_db(data_dir)
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        logger.error(f"Data directory: {data_dir}")
        logger.error("Please ensure the data volume is mounted (-v ./data:/data) and writable")
        raise

    runtime = init_runtime(config)
    settings = runtime.load_settings()
    logger.info(
        f"Library mode: {settings.library_mode.value}, media library: {settings.media_library_path}"
    )
    runtime.scheduler.start()
    try:
        yield
    finally:
        await runtime.scheduler.shutdown()


# Create FastAPI app
app = FastAPI(title="mediatier", version="1.0.0", lifespan=lifespan)

# Include API routes
app.include_router(router)


# Global exception handler for unhandled exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions with detailed logging."""
    logger.exception(f"Unhandled exception in {request.method} {request.url}")
    return JSONResponse(
        status_code=500,
        content={
            "error": str(exc),
            "type": exc.__class__.__name__,
            "message": f"Internal server error: {str(exc)}",
            "path": str(request.url),
            "method": request.method,
            "traceback": traceback.format_exc()
        }
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "mediatier API"}
