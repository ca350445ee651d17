"""
Complaint Portal - FastAPI Application

Main entry point for the Complaint Portal backend.

Architecture:
- Identity: sign-up bootstraps profile + student role in one transaction
- Schema layer: every read/write goes through row-level policies
- Gateway: list/create/submit complaints, sequential attachment upload
- Storage: complaint-attachments bucket, namespaced by uploader id
"""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import auth_router, profiles_router, complaints_router, admin_router, storage_router
from .database import init_db
from .exceptions import AttachmentUploadError, PortalError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(asctime)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)
security_logger = logging.getLogger("complaint_portal.security")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Complaint Portal",
    description="""
    Complaint Portal - Student Complaint Tracking

    Students file complaints (optionally anonymous, with attachments);
    administrators triage, annotate and resolve them.

    ## Access model
    - Complaints, attachments and status history are readable by every signed-in account
    - Complaints are created by their owner and updated by the owner or an admin
    - Status history and roles are written by admins only
    - Admin notes are visible to admins only
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR HANDLING
# =============================================================================

def _error_body(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code in (401, 403):
        client = request.client.host if request.client else "unknown"
        security_logger.warning(
            f"Security event: status={exc.status_code}, path={request.url.path}, "
            f"ip={client}, exception={exc.__class__.__name__}"
        )
    body = _error_body(exc.code, exc.message)
    if isinstance(exc, AttachmentUploadError):
        body["error"]["complaint_id"] = exc.complaint_id
        body["error"]["failed_file"] = exc.failed_file
        body["error"]["uploaded"] = [a.id for a in exc.attachments]
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Unable to process the request."
    if errors:
        field = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        message = f"Validation error: {field} - {errors[0].get('msg')}"
    return JSONResponse(status_code=422, content=_error_body("VALIDATION_ERROR", message))


# Include routers
app.include_router(auth_router)
app.include_router(profiles_router)
app.include_router(complaints_router)
app.include_router(admin_router)
app.include_router(storage_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Complaint Portal",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m complaint_portal.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
