import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.applications.router import router as applications_router
from app.api.auth.router import router as auth_router
from app.api.counsellors.router import router as counsellors_router
from app.api.courses.router import router as courses_router
from app.api.dashboard.router import router as dashboard_router
from app.api.interviews.router import router as interviews_router
from app.api.leads.router import router as leads_router
from app.api.payments.router import router as payments_router
from app.auth.services import seed_admin
from app.core.config import settings
from app.db.session import AsyncSessionLocal, close_db, init_db
from app.events.router import router as events_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed the admin user on startup; release the engine on shutdown."""
    logger.info("Starting admissions back office")
    if settings.auto_create_tables:
        await init_db()
    async with AsyncSessionLocal() as db:
        await seed_admin(db)
    yield
    await close_db()
    logger.info("Admissions back office stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Admissions Back Office", lifespan=lifespan)

    # CORS: allow the dashboard frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(leads_router)
    app.include_router(courses_router)
    app.include_router(payments_router)
    app.include_router(applications_router)
    app.include_router(interviews_router)
    app.include_router(counsellors_router)
    app.include_router(dashboard_router)
    app.include_router(events_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
