"""FastAPI application."""
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .auth import PermissionChecker
from .catalog import get_catalog
from .config import settings
from .domain_errors import DomainError
from .models import User
from .problem_details import domain_error_handler
from .routers import audit, auth, revisions, sla, transitions
from .schemas import CatalogSummary, Envelope
from .states import ItemKind

# Create app
app = FastAPI(
    title="TradeOps Lifecycle Engine",
    version="1.0.0",
    description="State engine for RFQ and order line items"
)

# Production safety checks (fail closed on insecure config).
if settings.ENV.lower() == "production" and settings.JWT_SECRET_KEY in {"change-me", "change-me-too"}:
    raise RuntimeError("JWT_SECRET_KEY must be set in production.")
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.ENV.lower() == "production" and not settings.COLLABORATORS_BASE_URL:
    raise RuntimeError("COLLABORATORS_BASE_URL must be set in production; guarded transitions fail without it.")

# CORS
cors_methods = ["GET", "POST", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)

app.add_exception_handler(DomainError, domain_error_handler)

# Include routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(transitions.router, prefix="/api/v1")
app.include_router(revisions.router, prefix="/api/v1")
app.include_router(sla.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
        "catalogVersion": get_catalog().version,
    }


@app.get("/api/v1/system/catalog", response_model=Envelope[CatalogSummary])
def catalog_summary(current_user: User = Depends(PermissionChecker("canViewCatalog"))):
    """Loaded transition catalog version and edge counts per item kind."""
    catalog = get_catalog()
    return Envelope(
        data=CatalogSummary(
            version=catalog.version,
            edges={kind.value: catalog.edge_count(kind) for kind in ItemKind},
        )
    )


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "TradeOps Lifecycle Engine API",
        "version": "1.0.0",
        "docs": "/docs"
    }
