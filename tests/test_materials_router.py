"""Integration tests for the /api/v1/materials endpoints."""

from __future__ import annotations

import io
import uuid
import zipfile

import pytest
from httpx import AsyncClient

from phonica.audio.storage import AudioMetadataService
from phonica.models.equipment import Equipment
from phonica.models.tag import Tag

METADATA = {"fileFormat": "WAV", "sampleRate": 48000, "durationSeconds": 120.5, "channels": 2}


@pytest.fixture
async def seed_equipment(session_factory) -> list[Equipment]:
    items = [
        Equipment(name="Zoom H6", type="Recorder"),
        Equipment(name="Rode NTG3", type="Microphone"),
    ]
    async with session_factory() as session:
        session.add_all(items)
        await session.commit()
    return items


# ---------------------------------------------------------------------------
# POST /api/v1/materials
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_json_with_temp_file(self, create_material, seed_equipment) -> None:
        body = await create_material(
            tags=["nature", "birds"],
            equipmentIds=[seed_equipment[0].id],
            rating=4,
        )
        assert body["slug"] == "forest-morning"
        assert body["fileFormat"] == "WAV"
        assert body["sampleRate"] == 48000
        assert body["durationSeconds"] == pytest.approx(120.5)
        assert [t["name"] for t in body["tags"]] == ["birds", "nature"]
        assert body["equipments"][0]["name"] == "Zoom H6"
        assert body["projects"] == []

    async def test_multipart_direct_upload(self, client: AsyncClient, wav_bytes: bytes) -> None:
        resp = await client.post(
            "/api/v1/materials",
            data={
                "title": "Harbour Gulls",
                "recordedAt": "2024-06-10T18:00:00Z",
                "tags": "sea,birds",
                "latitude": "not-a-number",
                "rating": "",
                "memo": "null",
            },
            files={"file": ("gulls.wav", wav_bytes, "audio/wav")},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["slug"] == "harbour-gulls"
        assert body["filePath"].endswith("_gulls.wav")
        assert body["sampleRate"] == 48000
        assert body["latitude"] is None
        assert body["rating"] is None
        assert body["memo"] is None
        assert sorted(t["name"] for t in body["tags"]) == ["birds", "sea"]

    async def test_missing_fields(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/materials", json={"memo": "no title"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "MISSING_FIELDS"
        assert body["details"]["missingFields"] == ["title", "recordedAt", "file"]

    async def test_invalid_equipment(
        self, client: AsyncClient, audio_service: AudioMetadataService, wav_bytes: bytes
    ) -> None:
        temp_file_id = await audio_service.save_temp_file("a.wav", wav_bytes)
        resp = await client.post(
            "/api/v1/materials",
            json={
                "title": "T",
                "recordedAt": "2024-05-01T00:00:00Z",
                "tempFileId": temp_file_id,
                "equipmentIds": ["nope"],
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid equipment IDs: nope"

        listing = await client.get("/api/v1/materials")
        assert listing.json()["pagination"]["totalItems"] == 0

    async def test_temp_file_not_found(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/materials",
            json={
                "title": "T",
                "recordedAt": "2024-05-01T00:00:00Z",
                "tempFileId": str(uuid.uuid4()),
                "metadata": METADATA,
            },
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "TEMP_FILE_NOT_FOUND"

    async def test_duplicate_title(
        self, create_material, client: AsyncClient, audio_service, wav_bytes: bytes
    ) -> None:
        await create_material()
        temp_file_id = await audio_service.save_temp_file("b.wav", wav_bytes)
        resp = await client.post(
            "/api/v1/materials",
            json={
                "title": "Forest Morning",
                "recordedAt": "2024-05-02T00:00:00Z",
                "tempFileId": temp_file_id,
                "metadata": METADATA,
            },
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["field"] == "title"
        assert body["code"] == "DUPLICATE_TITLE"

    async def test_out_of_range_rating(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/materials",
            json={"title": "T", "recordedAt": "2024-05-01T00:00:00Z", "rating": 9},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"][0]["field"] == "rating"

    async def test_overlong_tag_name(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/materials",
            json={"title": "T", "recordedAt": "2024-05-01T00:00:00Z", "tags": ["x" * 51]},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"][0]["field"] == "tags"

    async def test_non_object_json(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/materials", json=["a"])
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# GET /api/v1/materials
# ---------------------------------------------------------------------------


class TestList:
    async def test_pagination_shape(self, client: AsyncClient, create_material) -> None:
        for title in ("Alpha", "Beta", "Gamma"):
            await create_material(title=title)

        resp = await client.get("/api/v1/materials", params={"page": 1, "limit": 2})
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 2
        assert body["pagination"] == {"page": 1, "limit": 2, "totalItems": 3, "totalPages": 2}

    async def test_sort_by_title(self, client: AsyncClient, create_material) -> None:
        for title in ("Beta", "Alpha", "Gamma"):
            await create_material(title=title)

        resp = await client.get("/api/v1/materials", params={"sortBy": "title", "sortOrder": "asc"})
        assert [m["title"] for m in resp.json()["data"]] == ["Alpha", "Beta", "Gamma"]

    async def test_title_filter_is_case_insensitive(
        self, client: AsyncClient, create_material
    ) -> None:
        await create_material(title="Forest Morning")
        await create_material(title="City Night")

        resp = await client.get("/api/v1/materials", params={"title": "FOREST"})
        assert [m["title"] for m in resp.json()["data"]] == ["Forest Morning"]

    async def test_title_filter_escapes_wildcards(
        self, client: AsyncClient, create_material
    ) -> None:
        await create_material(title="Forest Morning")
        resp = await client.get("/api/v1/materials", params={"title": "%"})
        assert resp.json()["data"] == []

    async def test_tag_filter(self, client: AsyncClient, create_material) -> None:
        await create_material(title="A", tags=["nature"])
        await create_material(title="B", tags=["urban"])

        resp = await client.get("/api/v1/materials", params={"tag": "urban"})
        assert [m["title"] for m in resp.json()["data"]] == ["B"]

    async def test_invalid_sort_field(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/materials", params={"sortBy": "filePath"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    async def test_limit_is_clamped(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/materials", params={"limit": 1000, "page": 0})
        assert resp.json()["pagination"]["limit"] == 100
        assert resp.json()["pagination"]["page"] == 1


# ---------------------------------------------------------------------------
# /api/v1/materials/{slug}
# ---------------------------------------------------------------------------


class TestSingle:
    async def test_get(self, client: AsyncClient, create_material) -> None:
        created = await create_material(tags=["nature"])
        resp = await client.get(f"/api/v1/materials/{created['slug']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    async def test_get_unknown(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/materials/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Material not found", "code": "NOT_FOUND"}

    async def test_put_replaces_tags(self, client: AsyncClient, create_material) -> None:
        created = await create_material(tags=["a", "b"])
        resp = await client.put(
            f"/api/v1/materials/{created['slug']}",
            json={"title": "Forest Morning", "recordedAt": "2024-05-01T06:30:00Z", "tags": ["c"]},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert [t["name"] for t in body["tags"]] == ["c"]
        assert body["filePath"] == created["filePath"]
        assert body["sampleRate"] == 48000

    async def test_put_unknown(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/api/v1/materials/nope",
            json={"title": "X", "recordedAt": "2024-05-01T06:30:00Z"},
        )
        assert resp.status_code == 404

    async def test_delete(
        self, client: AsyncClient, create_material, audio_service: AudioMetadataService
    ) -> None:
        created = await create_material()
        resp = await client.delete(f"/api/v1/materials/{created['slug']}")
        assert resp.status_code == 200
        assert (await client.get(f"/api/v1/materials/{created['slug']}")).status_code == 404
        assert not audio_service.resolve_public_path(created["filePath"]).exists()

    async def test_download(self, client: AsyncClient, create_material, wav_bytes: bytes) -> None:
        created = await create_material()
        resp = await client.get(f"/api/v1/materials/{created['slug']}/download")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "audio/wav"
        assert resp.headers["content-disposition"].startswith("attachment")
        assert resp.content == wav_bytes

    async def test_play_is_inline(self, client: AsyncClient, create_material) -> None:
        created = await create_material()
        resp = await client.get(
            f"/api/v1/materials/{created['slug']}/download", params={"play": "true"}
        )
        assert resp.headers["content-disposition"].startswith("inline")

    async def test_download_missing_file(
        self, client: AsyncClient, create_material, audio_service: AudioMetadataService
    ) -> None:
        created = await create_material()
        audio_service.resolve_public_path(created["filePath"]).unlink()

        resp = await client.get(f"/api/v1/materials/{created['slug']}/download")
        assert resp.status_code == 404
        assert resp.json()["code"] == "FILE_NOT_FOUND"


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------


class TestBulk:
    async def test_bulk_add_tags(
        self, client: AsyncClient, create_material, session_factory
    ) -> None:
        a = await create_material(title="A", tags=["old"])
        b = await create_material(title="B")
        async with session_factory() as session:
            tag = Tag(name="new", slug="new")
            session.add(tag)
            await session.commit()

        resp = await client.post(
            "/api/v1/materials/bulk/tags",
            json={"materialIds": [a["id"], b["id"]], "tagIds": [tag.id], "mode": "add"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["affectedMaterials"] == 2
        assert body["tags"] == [{"tagId": tag.id, "tagName": "new", "count": 2}]

        a_tags = (await client.get(f"/api/v1/materials/{a['slug']}")).json()["tags"]
        assert [t["name"] for t in a_tags] == ["new", "old"]

    async def test_bulk_replace_tags(
        self, client: AsyncClient, create_material, session_factory
    ) -> None:
        a = await create_material(title="A", tags=["old"])
        async with session_factory() as session:
            tag = Tag(name="new", slug="new")
            session.add(tag)
            await session.commit()

        resp = await client.post(
            "/api/v1/materials/bulk/tags",
            json={"materialIds": [a["id"]], "tagIds": [tag.id], "mode": "replace"},
        )
        assert resp.status_code == 200
        a_tags = (await client.get(f"/api/v1/materials/{a['slug']}")).json()["tags"]
        assert [t["name"] for t in a_tags] == ["new"]

    async def test_bulk_tags_unknown_material(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/materials/bulk/tags",
            json={"materialIds": ["ghost"], "tagIds": ["t"]},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Materials not found: ghost"

    async def test_bulk_tags_requires_ids(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/materials/bulk/tags", json={"materialIds": [], "tagIds": []}
        )
        assert resp.status_code == 400

    async def test_bulk_delete(
        self, client: AsyncClient, create_material, audio_service: AudioMetadataService
    ) -> None:
        a = await create_material(title="A")
        b = await create_material(title="B")
        audio_service.resolve_public_path(b["filePath"]).unlink()

        resp = await client.post(
            "/api/v1/materials/bulk/delete", json={"materialIds": [a["id"], b["id"]]}
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "deletedCount": 2, "missingFiles": 1}

        listing = await client.get("/api/v1/materials")
        assert listing.json()["pagination"]["totalItems"] == 0

    async def test_bulk_add_to_project(self, client: AsyncClient, create_material) -> None:
        a = await create_material(title="A")
        b = await create_material(title="B")
        project = (await client.post("/api/v1/projects", json={"name": "Dawn Chorus"})).json()
        await client.post(
            f"/api/v1/projects/{project['slug']}/materials", json={"materialId": a["id"]}
        )

        resp = await client.post(
            "/api/v1/materials/bulk/projects",
            json={"materialIds": [a["id"], b["id"]], "projectId": project["id"]},
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "project": {"id": project["id"], "name": "Dawn Chorus", "slug": "dawn-chorus"},
            "addedCount": 1,
            "alreadyInProject": 1,
            "totalMaterials": 2,
            "message": None,
        }

        again = await client.post(
            "/api/v1/materials/bulk/projects",
            json={"materialIds": [a["id"], b["id"]], "projectId": project["id"]},
        )
        body = again.json()
        assert body["addedCount"] == 0
        assert body["alreadyInProject"] == 2
        assert body["message"] == "All selected materials are already in this project"

    async def test_bulk_projects_unknown_material(
        self, client: AsyncClient, create_material
    ) -> None:
        a = await create_material(title="A")
        project = (await client.post("/api/v1/projects", json={"name": "P"})).json()

        resp = await client.post(
            "/api/v1/materials/bulk/projects",
            json={"materialIds": [a["id"], "ghost"], "projectId": project["id"]},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Materials not found: ghost"

    async def test_bulk_projects_unknown_project(
        self, client: AsyncClient, create_material
    ) -> None:
        a = await create_material(title="A")
        resp = await client.post(
            "/api/v1/materials/bulk/projects",
            json={"materialIds": [a["id"]], "projectId": "nope"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Project not found"

    async def test_bulk_download(
        self, client: AsyncClient, create_material, wav_bytes: bytes
    ) -> None:
        a = await create_material(title="A")
        b = await create_material(title="B")

        resp = await client.post(
            "/api/v1/materials/bulk/download", json={"materialIds": [b["id"], a["id"]]}
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        assert 'filename="materials.zip"' in resp.headers["content-disposition"]
        assert resp.headers["x-file-count"] == "2"
        assert "x-missing-files" not in resp.headers

        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            assert archive.namelist() == [f"{b['slug']}.wav", f"{a['slug']}.wav"]
            assert archive.read(f"{a['slug']}.wav") == wav_bytes

    async def test_bulk_download_skips_missing_files(
        self, client: AsyncClient, create_material, audio_service: AudioMetadataService
    ) -> None:
        a = await create_material(title="A")
        b = await create_material(title="B")
        audio_service.resolve_public_path(b["filePath"]).unlink()

        resp = await client.post(
            "/api/v1/materials/bulk/download", json={"materialIds": [a["id"], b["id"]]}
        )
        assert resp.status_code == 200
        assert resp.headers["x-missing-files"] == b["slug"]
        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            assert archive.namelist() == [f"{a['slug']}.wav"]

    async def test_bulk_download_without_any_file(
        self, client: AsyncClient, create_material, audio_service: AudioMetadataService
    ) -> None:
        a = await create_material(title="A")
        audio_service.resolve_public_path(a["filePath"]).unlink()

        resp = await client.post("/api/v1/materials/bulk/download", json={"materialIds": [a["id"]]})
        assert resp.status_code == 404
        assert resp.json()["code"] == "FILE_NOT_FOUND"

    async def test_bulk_download_unknown_material(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/materials/bulk/download", json={"materialIds": ["ghost"]})
        assert resp.status_code == 404
        assert resp.json()["error"] == "Materials not found: ghost"
