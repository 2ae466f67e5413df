"""Shared fixtures.

Tests run against an in-memory SQLite database (via aiosqlite) and a temp
directory audio store, so no PostgreSQL or real upload tree is needed.
"""

from __future__ import annotations

import io
import math
import struct
import wave
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from phonica.audio.storage import AudioMetadataService, get_audio_service
from phonica.db.session import get_db
from phonica.main import create_app
from phonica.models import Base

# ---------------------------------------------------------------------------
# In-memory SQLite engine for tests
# ---------------------------------------------------------------------------

test_engine = create_async_engine("sqlite+aiosqlite://", echo=False)
test_session_factory = async_sessionmaker(test_engine, expire_on_commit=False)


@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign keys for SQLite (off by default)."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def _override_get_db() -> AsyncIterator[AsyncSession]:
    async with test_session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Audio helpers
# ---------------------------------------------------------------------------


def make_wav_bytes(
    duration_seconds: float = 0.5,
    sample_rate: int = 48000,
    channels: int = 2,
    sample_width: int = 2,
) -> bytes:
    """Build a small sine-wave WAV file in memory."""
    buffer = io.BytesIO()
    num_frames = int(sample_rate * duration_seconds)
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)

        frames = bytearray()
        for i in range(num_frames):
            sample = int(8000 * math.sin(2 * math.pi * 440 * i / sample_rate))
            packed = struct.pack("<i", sample)[:sample_width]
            frames.extend(packed * channels)
        wf.writeframes(bytes(frames))
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_tables() -> AsyncIterator[None]:
    """Create tables before the test and drop them after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
async def session(db_tables) -> AsyncIterator[AsyncSession]:
    async with test_session_factory() as db:
        yield db


@pytest.fixture
def audio_service(tmp_path: Path) -> AudioMetadataService:
    return AudioMetadataService(
        temp_dir=tmp_path / "tmp",
        upload_dir=tmp_path / "uploads",
        url_prefix="/uploads/materials",
        temp_file_ttl_seconds=3600,
    )


@pytest.fixture
def wav_bytes() -> bytes:
    return make_wav_bytes()


@pytest.fixture
def wav_factory() -> Callable[..., bytes]:
    return make_wav_bytes


@pytest.fixture
def app(db_tables, audio_service: AudioMetadataService) -> FastAPI:
    """Full application with the database and audio store swapped for test doubles."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_audio_service] = lambda: audio_service
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def session_factory(db_tables) -> async_sessionmaker[AsyncSession]:
    """Factory for seeding rows outside of a request."""
    return test_session_factory


SAMPLE_METADATA = {
    "fileFormat": "WAV",
    "sampleRate": 48000,
    "bitDepth": 24,
    "durationSeconds": 120.5,
    "channels": 2,
}


@pytest.fixture
def create_material(client: AsyncClient, audio_service: AudioMetadataService, wav_bytes: bytes):
    """POST a material through the two-phase JSON path and return the response body."""

    async def _create(title: str = "Forest Morning", **fields) -> dict:
        temp_file_id = await audio_service.save_temp_file("take1.wav", wav_bytes)
        payload = {
            "title": title,
            "recordedAt": "2024-05-01T06:30:00Z",
            "tempFileId": temp_file_id,
            "fileName": "take1.wav",
            "metadata": SAMPLE_METADATA,
            **fields,
        }
        resp = await client.post("/api/v1/materials", json=payload)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create
