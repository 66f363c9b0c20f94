# src/launchkit_backend/app/main.py
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load .env before any settings are read
load_dotenv()

from launchkit_backend.app.core.logging import setup_logging
setup_logging()

from launchkit_backend.app.auth.auth0 import Auth0Client
from launchkit_backend.app.auth.exchange import TokenExchanger
from launchkit_backend.app.core.config import Settings, get_settings
from launchkit_backend.app.core.errors import AuthError, DB_NOT_SIGNED_IN, NOT_SIGNED_IN
from launchkit_backend.app.core.trace import auth_trace
from launchkit_backend.app.services.plans import PlanCatalog, get_plan_catalog
from launchkit_backend.app.session.composer import SessionComposer
from launchkit_backend.app.session.guard import (
    SessionLoading,
    SignInRequired,
    session_loading_handler,
    sign_in_required_handler,
)
from launchkit_backend.app.session.registry import SessionRegistry
from launchkit_backend.app.store.firestore import FirestoreClient

from .api.routes.auth import router as auth_router
from .api.routes.auth_token import router as token_router
from .api.routes.pages import protected as protected_pages, public as public_pages


def composer_factory(http: httpx.AsyncClient, settings: Settings, plans: PlanCatalog):
    """Wire one composer with its own identity and store clients over the shared HTTP client."""
    def build() -> SessionComposer:
        return SessionComposer(
            identity_client=Auth0Client(http, settings),
            store=FirestoreClient(http, settings),
            exchanger=TokenExchanger(http, settings.token_exchange_url),
            plans=plans,
        )
    return build


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    async with httpx.AsyncClient(timeout=settings.http_timeout) as http:
        app.state.http = http
        app.state.sessions = SessionRegistry(
            composer_factory(http, settings, app.state.plans),
            settings.session_secret,
            signin_path=settings.signin_path,
        )
        try:
            yield
        finally:
            await app.state.sessions.close_all()


async def auth_error_handler(_: Request, exc: AuthError) -> JSONResponse:
    status_code = 401 if exc.code in (NOT_SIGNED_IN, DB_NOT_SIGNED_IN) else 400
    auth_trace("http.auth_error", code=exc.code, status=status_code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None, plans: PlanCatalog | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="LaunchKit API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.plans = plans or get_plan_catalog()

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(SessionLoading, session_loading_handler)
    app.add_exception_handler(SignInRequired, sign_in_required_handler)

    @app.middleware("http")
    async def session_cookie(request: Request, call_next):
        response = await call_next(request)
        cookie = getattr(request.state, "new_session_cookie", None)
        if cookie:
            response.set_cookie(
                settings.session_cookie_name,
                cookie,
                secure=settings.secure_cookies,
                httponly=True,
                samesite="lax",
                path="/",
            )
        return response

    # 1) Health check (open)
    @app.get("/healthz")
    def health():
        return {"status": "ok"}

    # 2) Token exchange (Auth0 bearer -> Firebase custom token)
    app.include_router(token_router)

    # 3) Session + auth operations; must precede the public /auth/{screen} pages
    app.include_router(auth_router)
    app.include_router(public_pages)

    # 4) Route table: guarded pages
    app.include_router(protected_pages)

    _add_bearer_security_to_openapi(app)
    return app


# --- Swagger/OpenAPI: Add Bearer JWT "Authorize" button for the token exchange ---
def _add_bearer_security_to_openapi(app: FastAPI) -> None:
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=getattr(app, "description", None),
            routes=app.routes,
        )
        components = openapi_schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["Auth0Bearer"] = {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": (
                "Auth0 access token for /api/auth-firebase-token.\n"
                "**Do not** include the 'Bearer ' prefix here; Swagger will add it."
            ),
        }
        token_op = openapi_schema.get("paths", {}).get("/api/auth-firebase-token", {}).get("post")
        if isinstance(token_op, dict):
            token_op.setdefault("security", [{"Auth0Bearer": []}])

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi


app = create_app()
