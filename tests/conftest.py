import asyncio
import io

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.orm import sessionmaker

from database import get_db, init_db, make_engine
from errors import NotFoundError
from main import app
from models import Company
from recognition import DetectedFace

OPEN_EYE = [(0, 0), (3, -1.5), (7, -1.5), (10, 0), (7, 1.5), (3, 1.5)]    # EAR 0.3
CLOSED_EYE = [(0, 0), (3, -0.5), (7, -0.5), (10, 0), (7, 0.5), (3, 0.5)]  # EAR 0.1


def make_photo(color=(200, 150, 100), fmt="JPEG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64), color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_face(x=100.0, y=100.0, descriptor=None, eye=OPEN_EYE) -> DetectedFace:
    if descriptor is None:
        descriptor = np.zeros(4, dtype=np.float32)
    return DetectedFace(
        bbox=(x, y, 80.0, 80.0),
        descriptor=np.asarray(descriptor, dtype=np.float32),
        det_score=0.99,
        left_eye=np.asarray(eye, dtype=np.float64),
        right_eye=np.asarray(eye, dtype=np.float64),
    )


class FakeRecognizer:
    """Maps enrollment photo bytes to descriptors; frames are already face lists."""

    def __init__(self, descriptors=None):
        self.descriptors = dict(descriptors or {})
        self.extract_calls = 0

    def extract_descriptor(self, image_bytes):
        self.extract_calls += 1
        return self.descriptors.get(image_bytes)

    def detect_faces(self, frame):
        return list(frame)


class FakeCamera:
    def __init__(self, frames):
        self.frames = list(frames)

    def read(self):
        if not self.frames:
            return None
        return self.frames.pop(0)


class FakeApi:
    """In-memory stand-in for AttendanceApiClient."""

    def __init__(self, rosters=None, photos=None, delay=0.0):
        self.rosters = rosters or {}
        self.photos = photos or {}
        self.delay = delay
        self.photo_calls = 0
        self.active = 0
        self.max_active = 0
        self.person_ids = {}
        self.entries = []
        self.exits = []
        self.release = None

    async def roster(self, company_id):
        if company_id not in self.rosters:
            raise NotFoundError(f"Company {company_id} not found")
        labels = self.rosters[company_id]
        return list(labels), len(labels)

    async def enrollment_photo(self, label, company_id):
        self.photo_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if (company_id, label) not in self.photos:
                raise NotFoundError("Image not found")
            return self.photos[(company_id, label)]
        finally:
            self.active -= 1

    async def person_id(self, label, company_id):
        if self.release is not None:
            await self.release.wait()
        if label not in self.person_ids:
            raise NotFoundError("Person not found")
        return self.person_ids[label]

    async def register_entry(self, person_id, company_id, timestamp, location=None, auth_result=None):
        self.entries.append((person_id, company_id, timestamp))
        return {"message": "Entry recorded successfully"}

    async def register_exit(self, person_id, company_id, timestamp):
        self.exits.append((person_id, company_id, timestamp))
        return {"message": "Exit recorded successfully"}


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def company_id(session_factory):
    session = session_factory()
    try:
        company = Company(name="Acme")
        session.add(company)
        session.commit()
        return company.id
    finally:
        session.close()


@pytest.fixture
def enroll(client):
    def _enroll(company_id, name, national_id, photo=None, title="Engineer"):
        return client.post(
            "/enroll",
            data={"name": name, "nationalId": national_id, "title": title, "companyId": str(company_id)},
            files={"photo": ("photo.jpg", photo or make_photo(), "image/jpeg")},
        )
    return _enroll
