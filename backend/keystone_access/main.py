"""Keystone Access: FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from keystone_access.config import settings
from keystone_access.database import async_engine, AsyncSessionLocal
from keystone_access.services.access_store import AccessStore
from keystone_access.services.audit_service import write_audit_log
from keystone_access.services.guest_links import GuestLinkService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def run_guest_link_cleanup():
    """Delete revoked and expired guest links."""
    async with AsyncSessionLocal() as session:
        try:
            removed = await GuestLinkService(AccessStore(session)).cleanup_stale()
            await write_audit_log(
                session, None, "scheduler.guest_link_cleanup",
                resource_type="guest_link", details={"removed": removed},
            )
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Guest link cleanup failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Keystone Access API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")

    # Schedule jobs
    scheduler.add_job(
        run_guest_link_cleanup,
        "interval",
        hours=settings.GUEST_TOKEN_CLEANUP_HOURS,
        id="guest_link_cleanup",
    )
    scheduler.start()
    logger.info("Scheduled jobs started (guest link cleanup)")

    yield

    # Shutdown
    scheduler.shutdown()
    await async_engine.dispose()
    logger.info("Keystone Access API shut down")


app = FastAPI(
    title="Keystone Access",
    description="Category permissions and guest share links for Keystone expense tracking",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from keystone_access.routes import categories, guest

app.include_router(categories.router)
app.include_router(guest.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "Keystone Access API", "version": "1.0.0"}
