"""
Kreisverband Portal API - Main Application Entry Point

FastAPI application for groups, status reports, Anträge, appointments and newsletters.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kvportal import __version__
from kvportal import models  # noqa: F401
from kvportal.addresses.router import router as addresses_router
from kvportal.antraege.router import router as antraege_router
from kvportal.appointments.router import router as appointments_router
from kvportal.auth.router import router as auth_router
from kvportal.core.config import settings
from kvportal.core.database import init_db
from kvportal.core.errors import register_exception_handlers
from kvportal.core.logging import configure_logging
from kvportal.email.router import router as email_router
from kvportal.faq.router import router as faq_router
from kvportal.groups.router import router as groups_router
from kvportal.newsletter.router import public_router as newsletter_public_router
from kvportal.newsletter.router import router as newsletter_router
from kvportal.portal.router import router as portal_router
from kvportal.status_reports.router import router as status_reports_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_logging()
    await init_db()
    yield


app = FastAPI(
    title=settings.app_name,
    description="API für Gruppen, Statusberichte, Anträge, Termine und Newsletter eines Kreisverbands",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# Health Check
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# Include Routers
app.include_router(auth_router, prefix="/api")
app.include_router(faq_router, prefix="/api")
app.include_router(groups_router, prefix="/api")
app.include_router(portal_router, prefix="/api")
app.include_router(status_reports_router, prefix="/api")
app.include_router(addresses_router, prefix="/api")
app.include_router(antraege_router, prefix="/api")
app.include_router(appointments_router, prefix="/api")
app.include_router(newsletter_router, prefix="/api")
app.include_router(newsletter_public_router, prefix="/api")
app.include_router(email_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("kvportal.main:app", host="0.0.0.0", port=8000, reload=True)
