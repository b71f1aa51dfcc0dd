import pytest
from httpx import AsyncClient, Response


def session_header(response: Response) -> dict[str, str]:
    """Cookie header carrying the session issued by *response*."""
    return {"Cookie": response.headers["set-cookie"].split(";", 1)[0]}


async def register(client: AsyncClient, name: str = "alice") -> tuple[str, dict[str, str]]:
    response = await client.post(
        "/api/v1/users/register",
        json={"name": name, "email": f"{name}@example.org", "password": "secret"},
    )
    assert response.status_code == 201, response.text
    client.cookies.clear()
    return response.json()["id"], session_header(response)


@pytest.mark.asyncio
async def test_register_sets_session_cookie(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/users/register",
        json={"name": "alice", "email": "alice@example.org", "password": "secret"},
    )

    assert response.status_code == 201
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("session=")
    assert "HttpOnly" in cookie
    assert "Max-Age=300" in cookie
    assert "id" in response.json()


@pytest.mark.asyncio
async def test_register_rejects_duplicates(client: AsyncClient) -> None:
    await register(client)

    response = await client.post(
        "/api/v1/users/register",
        json={"name": "alice", "email": "other@example.org", "password": "secret"},
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "user with this name or email already exists"


@pytest.mark.asyncio
async def test_register_rejects_bad_name(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/users/register",
        json={"name": "bad name", "email": "bad@example.org", "password": "secret"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_by_name_and_email(client: AsyncClient) -> None:
    user_id, _ = await register(client)

    for login in ("alice", "alice@example.org"):
        response = await client.post(
            "/api/v1/users/login", json={"name_or_email": login, "password": "secret"}
        )
        assert response.status_code == 200
        assert response.json() == {"id": user_id}
        assert response.headers["set-cookie"].startswith("session=")


@pytest.mark.asyncio
async def test_login_failures(client: AsyncClient) -> None:
    await register(client)

    wrong = await client.post(
        "/api/v1/users/login", json={"name_or_email": "alice", "password": "nope"}
    )
    missing = await client.post(
        "/api/v1/users/login", json={"name_or_email": "bob", "password": "secret"}
    )

    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "access denied"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_public_profile_hides_password(client: AsyncClient) -> None:
    user_id, _ = await register(client)

    response = await client.get("/api/v1/users/alice")

    assert response.status_code == 200
    assert response.json() == {"id": user_id, "name": "alice", "email": "alice@example.org"}


@pytest.mark.asyncio
async def test_me_routes_require_login(client: AsyncClient) -> None:
    no_cookie = await client.get("/api/v1/users/me/quests")
    expired = await client.get(
        "/api/v1/users/me/history",
        headers={"Cookie": "session=00000000-0000-0000-0000-000000000000"},
    )
    malformed = await client.get(
        "/api/v1/users/me/history", headers={"Cookie": "session=garbage"}
    )

    assert no_cookie.status_code == 401
    assert expired.status_code == 401
    assert malformed.status_code == 500


@pytest.mark.asyncio
async def test_owned_quests_listing(client: AsyncClient) -> None:
    _, auth = await register(client)
    for _ in range(2):
        assert (await client.post("/api/v1/quests", headers=auth)).status_code == 201

    response = await client.get("/api/v1/users/me/quests", params={"page": 0}, headers=auth)

    body = response.json()
    assert response.status_code == 200
    assert body["page"] == 0
    assert body["total_pages"] == 1
    assert [q["state"] for q in body["data"]] == ["unpublished", "unpublished"]


@pytest.mark.asyncio
async def test_empty_history(client: AsyncClient) -> None:
    _, auth = await register(client)

    response = await client.get("/api/v1/users/me/history", headers=auth)

    assert response.status_code == 200
    assert response.json() == {"data": [], "page": 0, "total_pages": 0}
