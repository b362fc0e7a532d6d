"""FastAPI application entry point."""
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from uxaudit.config import settings
from uxaudit.database import engine, get_db
from uxaudit.models import Base

Path(settings.FILE_STORAGE_PATH).mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, recover stale jobs, start background worker."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Nothing is running yet, so every "processing" job was orphaned by the last shutdown
    from uxaudit.services.job_worker import recover_stale_jobs, worker_loop
    await recover_stale_jobs(stale_minutes=0)

    worker_task = asyncio.create_task(worker_loop())

    yield

    # Cleanup
    worker_task.cancel()
    await engine.dispose()


app = FastAPI(
    title="UX Audit API",
    version="1.0.0",
    description="Backend API for website UX audit jobs.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Screenshots and report artifacts
app.mount("/uploads", StaticFiles(directory=settings.FILE_STORAGE_PATH), name="uploads")

# Register routers
from uxaudit.routes.audit import router as audit_router
from uxaudit.routes.external import router as external_router
from uxaudit.routes.public import router as public_router
app.include_router(audit_router)
app.include_router(external_router)
app.include_router(public_router)
