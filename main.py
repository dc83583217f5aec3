import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from core.container import open_services
from core.errors import AppError, app_error_handler
from routes.invitation import router as invitation_router
from routes.organization import router as organization_router
from routes.projects import router as project_router
from routes.subscription import router as subscription_router
from routes.tasks import router as tasks_router
from routes.webhook import router as webhook_router

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (open handles, build services)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests may install their own service graph before startup; its owner closes it
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = open_services(settings)
    app.state.engine = app.state.services.engine
    logger.info("✅ Application started (environment=%s)", settings.ENVIRONMENT)
    yield
    if owned:
        app.state.services.close()
    logger.info("✅ Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
def create_app() -> FastAPI:
    app = FastAPI(lifespan=lifespan, title="TeamFlow Billing Backend")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL, "http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AppError, app_error_handler)

    # =========================================
    # 📦 Routers
    # =========================================
    prefix = settings.API_PREFIX
    app.include_router(organization_router, prefix=prefix)
    app.include_router(subscription_router, prefix=prefix)
    app.include_router(invitation_router, prefix=prefix)
    app.include_router(project_router, prefix=prefix)
    app.include_router(tasks_router, prefix=prefix)
    app.include_router(webhook_router, prefix=prefix)

    # =========================================
    # 🩺 Health Check
    # =========================================
    @app.get("/health")
    def health_check():
        return {"status": "ok", "message": "Backend is running"}

    return app


app = create_app()
