"""
ADL Contributions - REST API

FastAPI application for point submissions: contribution, enrichment,
projected point reads and the admin forensics view.

Run with: uvicorn adl.api.main:app --reload
"""

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from adl.core.config import Settings, settings as default_settings
from adl.core.exceptions import AuthenticationError, SubmissionError, ValidationError
from adl.core.geo_utils import Location, to_finite
from adl.crowdsource.access import SubmissionAuthContext, to_submission_auth_context
from adl.crowdsource.events import utc_now_iso
from adl.crowdsource.photo_store import LocalPhotoStore, PhotoStore
from adl.crowdsource.submission import SubmissionService
from adl.database import StorageStore, build_store

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

USER_HEADER = "x-authenticated-user"
ADMIN_HEADER = "x-authenticated-admin"
PROXY_SECRET_HEADER = "x-auth-proxy-secret"

Authenticator = Callable[[Request], Optional[SubmissionAuthContext]]


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthResponse(BaseModel):
    """Service health."""
    status: str
    db: str
    ts: str
    version: str


# ============================================================================
# Authentication
# ============================================================================

class HeaderAuthenticator:
    """
    Reads identity headers set by the upstream session layer.

    ``X-Authenticated-User`` carries the user id and
    ``X-Authenticated-Admin: true`` marks an admin session. With a proxy
    secret configured, both headers are only honoured on requests carrying
    a matching ``X-Auth-Proxy-Secret``. Without one, the user id is taken
    as-is but admin claims are ignored.
    """

    def __init__(self, proxy_secret: Optional[str] = None):
        self.proxy_secret = proxy_secret or None

    def __call__(self, request: Request) -> Optional[SubmissionAuthContext]:
        user_id = request.headers.get(USER_HEADER)
        admin_claimed = request.headers.get(ADMIN_HEADER, "").strip().lower() in ("true", "1")

        if self.proxy_secret is None:
            if admin_claimed:
                logger.warning("Ignoring admin header: no auth proxy secret configured")
            return to_submission_auth_context(user_id, False)

        presented = request.headers.get(PROXY_SECRET_HEADER, "")
        if not hmac.compare_digest(presented.encode(), self.proxy_secret.encode()):
            if user_id or admin_claimed:
                logger.warning("Rejected identity headers without a valid proxy secret")
            return None
        return to_submission_auth_context(user_id, admin_claimed)


def require_viewer(viewer: Optional[SubmissionAuthContext]) -> SubmissionAuthContext:
    if viewer is None:
        raise AuthenticationError("Unauthorized")
    return viewer


async def read_json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def parse_center(lat: Optional[str], lng: Optional[str], radius: Optional[str]):
    """Center and radius for a radius query; (None, None) unless all are finite."""
    latitude, longitude, radius_km = to_finite(lat), to_finite(lng), to_finite(radius)
    if latitude is None or longitude is None or radius_km is None:
        return None, None
    return Location(latitude=latitude, longitude=longitude), radius_km


# ============================================================================
# Application
# ============================================================================

def create_app(
    store: Optional[StorageStore] = None,
    photo_store: Optional[PhotoStore] = None,
    authenticator: Optional[Authenticator] = None,
    config: Optional[Settings] = None,
    service: Optional[SubmissionService] = None,
) -> FastAPI:
    """
    Build the API around explicitly constructed collaborators.

    Args:
        store: Event/profile store (built from settings when omitted)
        photo_store: Photo store (local filesystem when omitted)
        authenticator: Maps a request to a viewer or None
        config: Settings
        service: Pre-built SubmissionService (overrides store/photo_store)

    Returns:
        FastAPI application
    """
    config = config or default_settings
    if service is None:
        service = SubmissionService(
            store=store or build_store(config),
            photo_store=photo_store or LocalPhotoStore(),
            config=config,
        )
    authenticate = authenticator or HeaderAuthenticator(config.auth_proxy_secret)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"ADL Contributions API starting ({config.app_env})")
        await service.store.initialize()
        yield
        await service.store.close()
        logger.info("ADL Contributions API stopped")

    app = FastAPI(
        title="ADL Contributions",
        description="Crowdsourced point contributions with fraud verification",
        version=API_VERSION,
        docs_url=None if config.is_production else "/docs",
        redoc_url=None if config.is_production else "/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service

    @app.exception_handler(SubmissionError)
    async def submission_error_handler(request: Request, exc: SubmissionError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # ------------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Check API health and storage reachability."""
        healthy = await service.store.ping()
        body = HealthResponse(
            status="ok" if healthy else "error",
            db="ok" if healthy else "error",
            ts=utc_now_iso(),
            version=API_VERSION,
        )
        return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())

    # ------------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------------

    @app.post("/api/submissions", tags=["Submissions"])
    async def create_submission(
        request: Request,
        idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    ):
        """Record a CREATE or ENRICH submission with its photo evidence."""
        viewer = require_viewer(authenticate(request))
        body = await read_json_body(request)

        result = await service.create_submission(
            body,
            viewer,
            headers=request.headers,
            peer=request.client.host if request.client else None,
            idempotency_key=(idempotency_key or "").strip() or None,
        )
        return JSONResponse(status_code=201 if result.created else 200, content=result.event.to_dict())

    @app.get("/api/submissions", tags=["Submissions"])
    async def list_submissions(
        request: Request,
        view: Optional[str] = Query(None, description="events or admin_events"),
        scope: Optional[str] = Query(None, description="bonamoussadi, cameroon or global"),
        lat: Optional[str] = Query(None),
        lng: Optional[str] = Query(None),
        radius: Optional[str] = Query(None, description="Radius in km"),
    ):
        """Projected points (default), the viewer's events, or admin events."""
        viewer = authenticate(request)

        if view == "admin_events":
            return await service.list_admin_events(viewer, scope)
        if view == "events":
            return await service.list_events(viewer, scope)

        center, radius_km = parse_center(lat, lng, radius)
        points = await service.list_points(viewer, scope, center, radius_km)
        return [point.to_dict() for point in points]

    @app.get("/api/submissions/{submission_id}", tags=["Submissions"])
    async def get_submission(
        submission_id: str,
        request: Request,
        view: Optional[str] = Query(None, description="event for the raw event"),
    ):
        """A projected point by id, or a single event with view=event."""
        viewer = require_viewer(authenticate(request))
        return await service.get_submission(submission_id, viewer, view)

    @app.put("/api/submissions/{submission_id}", tags=["Submissions"])
    async def update_submission(submission_id: str, request: Request):
        """Enrich a point through the older update interface."""
        viewer = require_viewer(authenticate(request))
        body = await read_json_body(request)
        event = await service.compat_enrich(submission_id, body, viewer)
        return event.to_dict()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from adl.core.logging import setup_logging

    setup_logging()
    uvicorn.run(app, host=default_settings.api_host, port=default_settings.api_port)
