import uuid

import pytest
from httpx import AsyncClient


async def _login(client: AsyncClient, name: str) -> dict[str, str]:
    response = await client.post(
        "/api/v1/users/register",
        json={"name": name, "email": f"{name}@example.org", "password": "secret"},
    )
    assert response.status_code == 201, response.text
    client.cookies.clear()
    return {"Cookie": response.headers["set-cookie"].split(";", 1)[0]}


async def _new_quest(client: AsyncClient, auth: dict[str, str]) -> str:
    response = await client.post("/api/v1/quests", headers=auth)
    assert response.status_code == 201, response.text
    return response.json()["id"]


@pytest.mark.asyncio
async def test_create_and_describe_quest(client: AsyncClient) -> None:
    auth = await _login(client, "author")
    quest_id = await _new_quest(client, auth)

    updated = await client.put(
        f"/api/v1/quests/{quest_id}",
        json={"title": "Caves", "description": "Bring a torch"},
        headers=auth,
    )
    info = await client.get(f"/api/v1/quests/{quest_id}")

    assert updated.status_code == 200
    assert info.status_code == 200
    body = info.json()
    assert (body["title"], body["description"], body["pages"], body["published"]) == (
        "Caves", "Bring a torch", 0, False,
    )


@pytest.mark.asyncio
async def test_page_writes(client: AsyncClient) -> None:
    auth = await _login(client, "author")
    quest_id = await _new_quest(client, auth)

    for index, source in [(0, "Hello"), (1, "World"), (0, "Hi")]:
        response = await client.put(
            f"/api/v1/quests/{quest_id}/pages/{index}", json={"source": source}, headers=auth
        )
        assert response.status_code == 200, response.text

    gap = await client.put(
        f"/api/v1/quests/{quest_id}/pages/5", json={"source": "gap"}, headers=auth
    )
    page = await client.get(f"/api/v1/quests/{quest_id}/pages/0", headers=auth)
    info = await client.get(f"/api/v1/quests/{quest_id}")

    assert gap.status_code == 400
    assert page.json()["source"] == "Hi"
    assert info.json()["pages"] == 2


@pytest.mark.asyncio
async def test_strangers_cannot_edit(client: AsyncClient) -> None:
    owner = await _login(client, "author")
    stranger = await _login(client, "stranger")
    quest_id = await _new_quest(client, owner)

    write = await client.put(
        f"/api/v1/quests/{quest_id}/pages/0", json={"source": "x"}, headers=stranger
    )
    read = await client.get(f"/api/v1/quests/{quest_id}/pages/0", headers=stranger)
    publish = await client.post(f"/api/v1/quests/{quest_id}/publish", headers=stranger)
    anonymous = await client.put(f"/api/v1/quests/{quest_id}", json={"title": "t"})

    assert write.status_code == 403
    assert read.status_code == 403
    assert publish.status_code == 403
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_unknown_quest_and_bad_ids(client: AsyncClient) -> None:
    missing = await client.get(f"/api/v1/quests/{uuid.uuid4()}")
    malformed = await client.get("/api/v1/quests/not-a-uuid")

    assert missing.status_code == 404
    assert malformed.status_code == 422


@pytest.mark.asyncio
async def test_publish_join_and_rate(client: AsyncClient) -> None:
    owner = await _login(client, "author")
    player = await _login(client, "player")
    quest_id = await _new_quest(client, owner)
    await client.put(f"/api/v1/quests/{quest_id}/pages/0", json={"source": "Hi"}, headers=owner)

    early_join = await client.post(f"/api/v1/quests/{quest_id}/join", headers=player)
    published = await client.post(f"/api/v1/quests/{quest_id}/publish", headers=owner)
    again = await client.post(f"/api/v1/quests/{quest_id}/publish", headers=owner)
    joined = await client.post(f"/api/v1/quests/{quest_id}/join", headers=player)
    rejoined = await client.post(f"/api/v1/quests/{quest_id}/join", headers=player)
    early_rating = await client.put(
        f"/api/v1/quests/{quest_id}/rating", json={"rating": 5}, headers=player
    )

    assert early_join.status_code == 403
    assert published.status_code == 200
    assert published.json()["published"] is True
    assert again.status_code == 409
    assert joined.status_code == 201
    assert joined.json()["completed_pages"] == 0
    assert joined.json()["finished_at"] is None
    assert rejoined.status_code == 409
    assert early_rating.status_code == 403
    assert early_rating.json()["detail"] == "quest is not finished"

    history = await client.get("/api/v1/users/me/history", headers=player)
    record = history.json()["data"][0]
    assert record["quest_id"] == quest_id
    assert record["completion"] == {"completed": 0, "total_pages": 1}


@pytest.mark.asyncio
async def test_rating_is_validated(client: AsyncClient) -> None:
    auth = await _login(client, "author")
    quest_id = await _new_quest(client, auth)

    response = await client.put(
        f"/api/v1/quests/{quest_id}/rating", json={"rating": 6}, headers=auth
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_owner_ratings_empty(client: AsyncClient) -> None:
    response = await client.get("/api/v1/ratings/owners")

    assert response.status_code == 200
    assert response.json() == []
