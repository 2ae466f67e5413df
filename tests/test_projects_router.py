"""Tests for /api/v1/projects and project membership."""

from __future__ import annotations

from httpx import AsyncClient

PROJECTS_URL = "/api/v1/projects"


async def _create(client: AsyncClient, name: str, description: str | None = None) -> dict:
    resp = await client.post(PROJECTS_URL, json={"name": name, "description": description})
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestProjects:
    async def test_create(self, client: AsyncClient) -> None:
        body = await _create(client, "Forest Soundscapes", "Dawn recordings")
        assert body["slug"] == "forest-soundscapes"
        assert body["description"] == "Dawn recordings"
        assert body["materialsCount"] == 0

    async def test_duplicate_name(self, client: AsyncClient) -> None:
        await _create(client, "Coastal Survey")
        resp = await client.post(PROJECTS_URL, json={"name": "Coastal Survey"})
        assert resp.status_code == 409
        assert resp.json()["field"] == "name"

    async def test_list(self, client: AsyncClient) -> None:
        await _create(client, "B project")
        await _create(client, "A project")

        resp = await client.get(PROJECTS_URL, params={"sortBy": "name", "sortOrder": "asc"})
        body = resp.json()
        assert [p["name"] for p in body["data"]] == ["A project", "B project"]
        assert body["pagination"]["totalItems"] == 2

    async def test_get_unknown(self, client: AsyncClient) -> None:
        resp = await client.get(f"{PROJECTS_URL}/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "Project not found"

    async def test_rename_regenerates_slug(self, client: AsyncClient) -> None:
        created = await _create(client, "City Ambiences", "Streets")
        resp = await client.put(
            f"{PROJECTS_URL}/{created['slug']}", json={"name": "Urban Ambiences"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["slug"] == "urban-ambiences"
        assert body["description"] == "Streets"
        assert (await client.get(f"{PROJECTS_URL}/city-ambiences")).status_code == 404

    async def test_update_clears_description(self, client: AsyncClient) -> None:
        created = await _create(client, "Night", "Owls")
        resp = await client.put(f"{PROJECTS_URL}/{created['slug']}", json={"description": None})
        assert resp.status_code == 200
        assert resp.json()["description"] is None
        assert resp.json()["slug"] == "night"

    async def test_delete_empty(self, client: AsyncClient) -> None:
        created = await _create(client, "Scratch")
        resp = await client.delete(f"{PROJECTS_URL}/{created['slug']}")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Project deleted successfully"}


class TestProjectMaterials:
    async def test_attach_and_list(self, client: AsyncClient, create_material) -> None:
        project = await _create(client, "Forest Soundscapes")
        material = await create_material()

        resp = await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials", json={"materialId": material["id"]}
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["materialsCount"] == 1
        assert body["materials"][0]["slug"] == material["slug"]

        listing = await client.get(f"{PROJECTS_URL}/{project['slug']}/materials")
        assert [m["id"] for m in listing.json()["data"]] == [material["id"]]

        detail = await client.get(f"/api/v1/materials/{material['slug']}")
        assert [p["slug"] for p in detail.json()["projects"]] == ["forest-soundscapes"]

    async def test_attach_twice(self, client: AsyncClient, create_material) -> None:
        project = await _create(client, "P")
        material = await create_material()
        url = f"{PROJECTS_URL}/{project['slug']}/materials"
        await client.post(url, json={"materialId": material["id"]})

        resp = await client.post(url, json={"materialId": material["id"]})
        assert resp.status_code == 409
        assert resp.json()["error"] == "Material is already associated with this project"

    async def test_attach_unknown_material(self, client: AsyncClient) -> None:
        project = await _create(client, "P")
        resp = await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials", json={"materialId": "ghost"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Material not found"

    async def test_detach(self, client: AsyncClient, create_material) -> None:
        project = await _create(client, "P")
        material = await create_material()
        await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials", json={"materialId": material["id"]}
        )

        resp = await client.delete(f"{PROJECTS_URL}/{project['slug']}/materials/{material['id']}")
        assert resp.status_code == 200
        assert resp.json()["materials"] == []
        # the material itself survives
        assert (await client.get(f"/api/v1/materials/{material['slug']}")).status_code == 200

    async def test_detach_not_attached(self, client: AsyncClient, create_material) -> None:
        project = await _create(client, "P")
        material = await create_material()

        resp = await client.delete(f"{PROJECTS_URL}/{project['slug']}/materials/{material['id']}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_ATTACHED"

    async def test_delete_with_materials_is_blocked(
        self, client: AsyncClient, create_material
    ) -> None:
        project = await _create(client, "P")
        material = await create_material()
        await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials", json={"materialId": material["id"]}
        )

        resp = await client.delete(f"{PROJECTS_URL}/{project['slug']}")
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "PROJECT_IN_USE"
        assert body["materialCount"] == 1

    async def test_deleting_material_updates_count(
        self, client: AsyncClient, create_material
    ) -> None:
        project = await _create(client, "P")
        material = await create_material()
        await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials", json={"materialId": material["id"]}
        )

        await client.delete(f"/api/v1/materials/{material['slug']}")

        resp = await client.get(f"{PROJECTS_URL}/{project['slug']}")
        assert resp.json()["materialsCount"] == 0


class TestBatchUpdate:
    async def test_add_then_remove(self, client: AsyncClient, create_material) -> None:
        project = await _create(client, "Forest Soundscapes")
        a = await create_material(title="A")
        b = await create_material(title="B")
        url = f"{PROJECTS_URL}/{project['slug']}/materials/batch-update"

        resp = await client.post(url, json={"add": [a["id"], b["id"]]})
        assert resp.status_code == 200
        assert resp.json() == {
            "project": {"id": project["id"], "name": "Forest Soundscapes", "slug": project["slug"]},
            "operations": {"added": 2, "removed": 0},
            "totalMaterials": 2,
        }

        resp = await client.post(url, json={"remove": [a["id"]]})
        assert resp.status_code == 200
        assert resp.json()["operations"] == {"added": 0, "removed": 1}
        assert resp.json()["totalMaterials"] == 1

        detail = (await client.get(f"{PROJECTS_URL}/{project['slug']}")).json()
        assert [m["id"] for m in detail["materials"]] == [b["id"]]

    async def test_already_linked_material_is_not_counted(
        self, client: AsyncClient, create_material
    ) -> None:
        project = await _create(client, "P")
        a = await create_material(title="A")
        url = f"{PROJECTS_URL}/{project['slug']}/materials/batch-update"
        await client.post(url, json={"add": [a["id"]]})

        resp = await client.post(url, json={"add": [a["id"]]})
        assert resp.json()["operations"] == {"added": 0, "removed": 0}
        assert resp.json()["totalMaterials"] == 1

    async def test_no_operations(self, client: AsyncClient) -> None:
        project = await _create(client, "P")
        resp = await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials/batch-update",
            json={"add": [], "remove": []},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "No operations to perform"

    async def test_unknown_project(self, client: AsyncClient) -> None:
        resp = await client.post(
            f"{PROJECTS_URL}/nope/materials/batch-update", json={"add": ["x"]}
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Project not found"

    async def test_unknown_material_to_add(self, client: AsyncClient, create_material) -> None:
        project = await _create(client, "P")
        a = await create_material(title="A")

        resp = await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials/batch-update",
            json={"add": [a["id"], "ghost"]},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Materials not found: ghost"
        detail = (await client.get(f"{PROJECTS_URL}/{project['slug']}")).json()
        assert detail["materials"] == []

    async def test_remove_material_not_in_project(
        self, client: AsyncClient, create_material
    ) -> None:
        project = await _create(client, "P")
        a = await create_material(title="A")
        b = await create_material(title="B")

        resp = await client.post(
            f"{PROJECTS_URL}/{project['slug']}/materials/batch-update",
            json={"add": [a["id"]], "remove": [b["id"]]},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "NOT_ATTACHED"
        assert body["error"] == f"Materials not in project: {b['id']}"
        # nothing was applied
        detail = (await client.get(f"{PROJECTS_URL}/{project['slug']}")).json()
        assert detail["materials"] == []
