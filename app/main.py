from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import DomainError
from app.features.users.routes import router as user_router
from app.features.organizations.routes import router as organization_router
from app.features.permissions.routes import router as permission_router
from app.features.permissions.routes import org_router as organization_permission_router
from app.features.permissions.service import sync_permission_catalog
from app.features.activity.routes import router as activity_router
from app.features.documents.routes import router as document_router
from app.features.reviews.routes import router as review_router
from app.features.reviews.routes import org_router as organization_review_router
from app.features.duty.routes import router as duty_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Organization Workspace",
    description="Permissions, document reviews and duty scheduling for multi-tenant organizations",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    log.info("%s %s rejected: %s %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Create tables and bring the permission catalog up to date."""
    log.info("Initializing database...")
    await init_db()
    async with AsyncSessionLocal() as session:
        added = await sync_permission_catalog(session)
        await session.commit()
    log.info("Database initialized successfully (%d new permissions)", added)


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Organization Workspace API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/users/me", "/organizations/*", "/permissions/*", "/reviews/*"],
            "public_endpoints": ["/organizations"]
        },
        "features": {
            "permissions": "Per-organization permission grants with admin bypass and implicit member rights",
            "organizations": "Multi-tenant organizations, memberships and join requests",
            "users": "User management with Appwrite authentication",
            "documents": "Versioned organization documents",
            "reviews": "Document review threads with per-reviewer state and audit trail",
            "duty": "Duty schedules, recurrence, assignments, swaps and statistics",
            "activity": "Organization activity log"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Organization routes
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])
app.include_router(organization_permission_router, prefix="/organizations", tags=["permissions"])
app.include_router(activity_router, prefix="/organizations", tags=["activity"])
app.include_router(document_router, prefix="/organizations", tags=["documents"])
app.include_router(organization_review_router, prefix="/organizations", tags=["reviews"])
app.include_router(duty_router, prefix="/organizations", tags=["duty"])

# Permission catalog
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])

# Review threads
app.include_router(review_router, prefix="/reviews", tags=["reviews"])
