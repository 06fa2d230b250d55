"""TicketFlow FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__, schemas
from ..config import get_settings
from ..database import init_db
from ..errors import TicketFlowError
from .routers import projects, tickets, users

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("ticketflow-core")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Starting TicketFlow API")
    yield


# Create FastAPI app
app = FastAPI(
    title="TicketFlow API",
    description="Issue and project tracking with role-based access",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _envelope(status_code: int, message: str, errors=None) -> JSONResponse:
    body = schemas.ApiResponse(success=False, message=message, errors=errors)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body, exclude_none=True))


@app.exception_handler(TicketFlowError)
async def ticketflow_error_handler(request: Request, exc: TicketFlowError):
    return _envelope(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        schemas.FieldError(
            field=".".join(str(part) for part in error["loc"] if part != "body"),
            message=error["msg"],
            value=error.get("input"),
        )
        for error in exc.errors()
    ]
    return _envelope(400, "Validation error", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _envelope(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    message = f"Internal server error: {exc}" if settings.debug else "Internal server error"
    return _envelope(500, message)


# Include all routers with /api/v1 prefix
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(tickets.router, prefix="/api/v1/tickets")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "TicketFlow API",
        "version": __version__,
        "docs": "/docs",
        "description": "Issue and project tracking with role-based access",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("ticketflow_core.api.main:app", host="0.0.0.0", port=8000)
