"""
Ticket Autopilot - Auto-respuesta de tickets con agentes IA
===========================================================

Aplicación principal FastAPI.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import structlog
import time

from app.core.config import settings
from app.core.database import async_session_maker, close_db, engine, init_db
from app.core.logging import configure_logging
from app.services.container import build_pipeline


configure_logging()
logger = structlog.get_logger()

DEMO_AGENT_ID = "demo-sales-bot"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Maneja el ciclo de vida de la aplicación.
    """
    logger.info("app_starting", env=settings.app_env)
    await init_db()
    logger.info("database_connected")

    app.state.settings = settings
    app.state.session_maker = async_session_maker
    app.state.pipeline = build_pipeline(settings, async_session_maker)
    if not settings.gateway_configured:
        logger.warning("gateway_not_configured", message="Las respuestas no se enviarán")

    yield

    logger.info("app_stopping")
    await close_db()
    logger.info("connections_closed")


app = FastAPI(
    title=settings.app_name,
    description="""
    ## Auto-respuesta de tickets

    Recibe mensajes de WhatsApp (Evolution API), resuelve el ticket,
    asigna un agente IA y envía la respuesta cuando la confianza es suficiente.

    ### Características
    - Agente fijo por ticket (sticky)
    - Selección inteligente por puntuación
    - Reglas de activación con prioridad
    - Auditoría de cada ejecución
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    if settings.is_development or process_time > 1000:
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(process_time, 2)
        )

    response.headers["X-Process-Time"] = str(round(process_time, 2))
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Error interno del servidor",
            "error": str(exc) if settings.is_development else None
        }
    )


# ===========================================
# ENDPOINTS BASE
# ===========================================

@app.get("/", tags=["Health"])
async def root():
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs" if settings.is_development else "disabled"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.app_env,
        "checks": {"api": "ok"}
    }


@app.get("/health/ready", tags=["Health"])
async def readiness_check():
    checks = {
        "database": "unknown",
        "gateway": "ok" if settings.gateway_configured else "not_configured",
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)}"

    # El gateway sin configurar no impide recibir mensajes
    ready = checks["database"] == "ok"

    return {
        "status": "ready" if ready else "not_ready",
        "checks": checks
    }


# ===========================================
# INCLUIR ROUTERS
# ===========================================

from app.api.webhooks.evolution import router as evolution_router
app.include_router(evolution_router, prefix="/webhook", tags=["Webhooks"])


# ===========================================
# SETUP
# ===========================================

@app.post("/setup/demo-agent", tags=["Setup"])
async def create_demo_agent(request: Request):
    """Crea un agente de vendas de demostración con las reglas estándar."""
    from app.schemas.agent import AgentProfile
    from app.services.database_service import DEMO_AGENT, SqlAgentConfigStore

    store = SqlAgentConfigStore(request.app.state.session_maker)

    existing = await store.get_agent_profile(DEMO_AGENT_ID)
    if existing:
        return {"message": "Demo agent already exists", "agent_id": existing.id}

    agent = await store.create_agent(AgentProfile(id=DEMO_AGENT_ID, **DEMO_AGENT))
    rules = await store.create_default_rules(agent.id)

    return {
        "message": "Demo agent created",
        "agent_id": agent.id,
        "rules": [rule.name for rule in rules]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development
    )
