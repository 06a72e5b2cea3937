import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy import select
from clarifind.config import get_settings
from clarifind.database import engine, Base, async_session
from clarifind.routers import doctors, lab_results
from clarifind.routers import auth as auth_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_doctor_profiles():
    """Create a profile for every doctor on the roster. Idempotent."""
    from clarifind.models.profile import Profile
    from clarifind.services.doctors import get_available_doctors

    async with async_session() as session:
        for doctor in get_available_doctors():
            existing = await session.scalar(select(Profile).where(Profile.email == doctor.email))
            if not existing:
                session.add(Profile(
                    email=doctor.email,
                    full_name=doctor.name,
                    user_type="doctor",
                    doctor_id=doctor.id,
                ))
        await session.commit()


async def seed_demo_lab_results():
    from clarifind.services.lab_result_store import LabResultStore
    from clarifind.services.storage import DatabaseStorage

    async with async_session() as session:
        store = LabResultStore(DatabaseStorage(session), key=settings.lab_results_storage_key)
        await store.seed_demo_data()
        await session.commit()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables then seed the doctor roster and demo results
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await seed_doctor_profiles()
    if settings.seed_demo_data:
        await seed_demo_lab_results()
    logger.info("Clarifind started")
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Clarifind",
    description="Lab result upload, review, and interpretation",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Lab results change under polling clients; never let a browser cache them."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0"
        response.headers["Expires"] = "0"
        response.headers["Pragma"] = "no-cache"
        return response


app.add_middleware(NoCacheMiddleware)

app.include_router(auth_router.router, prefix="/api/auth", tags=["Auth"])
app.include_router(lab_results.router, prefix="/api/lab-results", tags=["Lab Results"])
app.include_router(doctors.router, prefix="/api/doctors", tags=["Doctors"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "clarifind"}
