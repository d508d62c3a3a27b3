"""
Configuración de la base de datos PostgreSQL con SQLAlchemy async.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from app.core.config import settings


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Crea un engine async.
    NullPool para desarrollo y para SQLite (tests).
    """
    use_null_pool = settings.is_development or database_url.startswith("sqlite")
    kwargs = {"echo": echo}
    if use_null_pool:
        kwargs["poolclass"] = NullPool
    return create_async_engine(database_url, **kwargs)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Engine y session factory del proceso
engine = create_engine_for(settings.database_url, echo=settings.debug)
async_session_maker = create_session_maker(engine)


# Base para todos los modelos
class Base(DeclarativeBase):
    """Clase base para todos los modelos SQLAlchemy."""
    pass


async def init_db(bind: AsyncEngine = None):
    """
    Inicializa la base de datos creando todas las tablas.
    Llamar al inicio de la aplicación.
    """
    bind = bind or engine
    async with bind.begin() as conn:
        # Importar todos los modelos para que SQLAlchemy los registre
        from app.models import (  # noqa
            TicketRecord,
            AgentRecord,
            ActivationRuleRecord,
            AgentExecutionRecord,
            ConversationMessageRecord,
        )

        # Crear tablas (solo en desarrollo, usar Alembic en producción)
        if settings.is_development or bind is not engine:
            await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: AsyncEngine = None):
    """Cierra las conexiones de la base de datos."""
    await (bind or engine).dispose()
