import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from clarifind.database import Base, get_db
from clarifind.main import app
from clarifind.models import Profile
from clarifind.services.doctors import AVAILABLE_DOCTORS
from clarifind.services.lab_result_store import LabResultStore
from clarifind.services.storage import MemoryStorage


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return LabResultStore(storage)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async with session_factory() as session:
        for doctor in AVAILABLE_DOCTORS:
            session.add(Profile(email=doctor.email, full_name=doctor.name, user_type="doctor", doctor_id=doctor.id))
        await session.commit()

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def login(client, email):
    res = await client.post("/api/auth/token", json={"email": email})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
async def doctor_headers(client):
    return await login(client, "sarah.wilson@clarifind.com")


@pytest.fixture
async def other_doctor_headers(client):
    return await login(client, "michael.chen@clarifind.com")


@pytest.fixture
async def patient_headers(client):
    res = await client.post(
        "/api/auth/signup",
        json={"email": "john.doe@email.com", "full_name": "John Doe", "user_type": "patient"},
    )
    assert res.status_code == 201, res.text
    return await login(client, "john.doe@email.com")
