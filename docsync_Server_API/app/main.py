# main.py
# Description: This file contains the main FastAPI application, which serves as the primary API for the docsync server.
#
# Imports
import logging
#
# 3rd-party Libraries
import sys
from contextlib import asynccontextmanager
from loguru import logger
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
#
# Local Imports
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import close_sync_db
#
# Sync Endpoint
from docsync_Server_API.app.api.v1.endpoints.sync import router as sync_router
#
# Share Endpoint
from docsync_Server_API.app.api.v1.endpoints.share import router as share_router
#
# Models Endpoint
from docsync_Server_API.app.api.v1.endpoints.models import router as models_router
#
########################################################################################################################
#
# Functions:


# --- Loguru Configuration with Intercept Handler ---

# Define a handler class to intercept standard logging messages
class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )

# Remove default handler
logger.remove()

logger.add(
    sys.stderr,
    level=settings["LOG_LEVEL"],
    format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True,
)

# Configure standard logging to use the InterceptHandler
loggers_to_intercept = ["uvicorn", "uvicorn.error", "uvicorn.access"]
for logger_name in loggers_to_intercept:
    mod_logger = logging.getLogger(logger_name)
    mod_logger.handlers = [InterceptHandler()]
    mod_logger.propagate = False # Prevent messages from reaching the root logger

logger.info(f"Loguru logger configured (level={settings['LOG_LEVEL']}, mode={settings['APP_MODE_STR']}).")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup code can go here
    yield
    # Shutdown code
    logger.info("App Shutdown: Closing sync DB connections")
    close_sync_db()


app = FastAPI(
    title="docsync API",
    version="0.1.0",
    description="Offline-first document store with bidirectional sync and library sharing",
    lifespan=lifespan,
)

# Use configured origins
origins = settings["ALLOWED_ORIGINS"] or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"], # Must include OPTIONS, GET, POST, PUT, DELETE
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {"message": "Welcome to the docsync API; If you're seeing this, the server is running!"}

# Router for sync endpoints (pull/push/status/log)
app.include_router(sync_router, prefix="/api/v1/sync", tags=["sync"])


# Router for library sharing (access grants)
app.include_router(share_router, prefix="/api/v1/share", tags=["share"])


# Router for plain record CRUD
app.include_router(models_router, prefix="/api/v1/models", tags=["models"])


# Health check
@app.get("/health")
async def health_check():
    return {"status": "healthy"}

#
## End of main.py
########################################################################################################################
