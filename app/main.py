from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.api.routes import ping, tickets, users
from app.core.config import get_settings
from app.core.logging import configure_logging, init_tracer, shutdown_tracer
from app.dependencies.auth import TokenIdentityProvider
from app.tickets.assignment import RoundRobinAssignmentPolicy
from app.tickets.directory import SqlUserDirectory
from app.tickets.repository import SqlTicketStore
from app.tickets.service import TicketService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.identity_provider = TokenIdentityProvider.from_settings(settings)

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_dsn), echo=settings.database_echo, future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    store = SqlTicketStore(session_factory, engine=db_engine)
    app.state.db_engine = db_engine
    app.state.ticket_service = None
    try:
        await store.ensure_schema()
    except Exception:
        logger.exception("Ticket storage could not be initialised; ticket endpoints will return 503")
    else:
        app.state.ticket_service = TicketService(
            store,
            SqlUserDirectory(session_factory),
            assignment_policy=RoundRobinAssignmentPolicy(),
        )
        logger.info("Ticket service ready (%s)", settings.environment)
    try:
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)
        logger.info("Shutdown complete")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(users.router, prefix=settings.api_prefix)
    app.include_router(tickets.router, prefix=settings.api_prefix)
    return app


app = create_app()
