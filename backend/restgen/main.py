import logging
from collections.abc import Iterable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from restgen.api.auth import router as auth_router
from restgen.api.crud import register
from restgen.auth import TokenService, hash_password
from restgen.compiler import get_dialect
from restgen.config import Settings, settings as default_settings
from restgen.database import init_db, make_engine
from restgen.errors import AuthenticationError, RestgenError
from restgen.guard import ADMIN_ROLE
from restgen.models.user import User
from restgen.schema import ModelDescription

logger = logging.getLogger(__name__)
error_logger = logging.getLogger("restgen.errors")


def seed_admin(engine: Engine, config: Settings) -> None:
    """Create the configured admin account if it does not exist yet."""
    if not config.admin_email or not config.admin_password:
        return
    with Session(engine) as session:
        admin = session.exec(select(User).where(User.email == config.admin_email)).first()
        if not admin:
            admin = User(
                email=config.admin_email,
                password_hash=hash_password(config.admin_password),
                roles=ADMIN_ROLE,
            )
            session.add(admin)
            session.commit()
            logger.info("Created admin user %s", config.admin_email)


def create_app(
    config: Settings | None = None,
    models: Iterable[ModelDescription] = (),
    engine: Engine | None = None,
) -> FastAPI:
    config = config or default_settings
    logging.getLogger("restgen").setLevel(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        seed_admin(app.state.engine, config)
        yield

    app = FastAPI(title="restgen", version=config.version, lifespan=lifespan)

    app.state.settings = config
    app.state.engine = engine or make_engine(config.database_url)
    app.state.dialect = get_dialect(app.state.engine.dialect.name)
    app.state.tokens = TokenService(config)
    app.state.resources = {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def version_header(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Version"] = config.version
        return response

    @app.exception_handler(RestgenError)
    async def restgen_error_handler(request: Request, exc: RestgenError):
        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": "Bearer"}
        elif exc.status_code >= 500:
            error_logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers=headers,
        )

    init_db(app.state.engine)
    app.include_router(auth_router, prefix=config.api_prefix)
    logger.info("Authentication:")
    for method, path in (("POST", "/auth/register"), ("POST", "/auth/login"), ("GET", "/auth/me")):
        logger.info("  %-6s %s%s", method, config.api_prefix, path)

    for model in models:
        register(app, model)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
