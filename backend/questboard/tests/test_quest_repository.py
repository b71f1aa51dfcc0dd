from datetime import datetime, timedelta, timezone

import pytest

from questboard.core.errors import AlreadyJoined, UserAlreadyExists
from questboard.services.quest_repository import QuestRepository, UserRecord, total_pages_for

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


async def _user(repo: QuestRepository, name: str) -> UserRecord:
    return await repo.create_user(name, f"{name}@example.org", "digest")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_and_find_user(repository: QuestRepository) -> None:
    alice = await _user(repository, "alice")

    assert (await repository.get_user(alice.id)).name == "alice"
    assert (await repository.find_user_by_login("alice")).id == alice.id
    assert (await repository.find_user_by_login("alice@example.org")).id == alice.id
    assert await repository.find_user_by_login("bob") is None


@pytest.mark.asyncio
async def test_duplicate_name_or_email_rejected(repository: QuestRepository) -> None:
    await _user(repository, "alice")

    with pytest.raises(UserAlreadyExists):
        await repository.create_user("alice", "other@example.org", "digest")
    with pytest.raises(UserAlreadyExists):
        await repository.create_user("alicia", "alice@example.org", "digest")


# ---------------------------------------------------------------------------
# Quests and pages
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_new_quest_is_empty_and_unpublished(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")

    quest = await repository.create_quest(owner.id)
    stored = await repository.get_quest(quest.id)

    assert stored == quest
    assert (stored.title, stored.description, stored.pages, stored.published) == ("", "", 0, False)


@pytest.mark.asyncio
async def test_update_title_and_description(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    quest = await repository.create_quest(owner.id)

    await repository.update_quest_title_desc(quest.id, "Dungeon", "Deep and dark")

    stored = await repository.get_quest(quest.id)
    assert (stored.title, stored.description) == ("Dungeon", "Deep and dark")
    assert stored.owner == owner.id


@pytest.mark.asyncio
async def test_increment_pages_is_compare_and_swap(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    quest = await repository.create_quest(owner.id)

    assert await repository.increment_quest_pages(quest.id, 0) is True
    assert await repository.increment_quest_pages(quest.id, 0) is False
    assert (await repository.get_quest(quest.id)).pages == 1


@pytest.mark.asyncio
async def test_append_page_counts_and_stores(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    quest = await repository.create_quest(owner.id)

    assert await repository.append_page(quest.id, 0, "Hello", 30) is True
    assert await repository.append_page(quest.id, 0, "Stale", None) is False

    page = await repository.get_page(quest.id, 0)
    assert (page.source, page.time_limit_seconds) == ("Hello", 30)
    assert (await repository.get_quest(quest.id)).pages == 1


@pytest.mark.asyncio
async def test_upsert_page_replaces_content(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    quest = await repository.create_quest(owner.id)
    await repository.append_page(quest.id, 0, "Hello", None)

    await repository.upsert_page(quest.id, 0, "Hi", 10)

    page = await repository.get_page(quest.id, 0)
    assert (page.source, page.time_limit_seconds) == ("Hi", 10)
    assert await repository.get_page(quest.id, 1) is None


@pytest.mark.asyncio
async def test_set_published_only_once(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    quest = await repository.create_quest(owner.id)

    assert await repository.set_published(quest.id) is True
    assert await repository.set_published(quest.id) is False
    assert (await repository.get_quest(quest.id)).published is True


@pytest.mark.asyncio
async def test_list_owned_quests_is_paged(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    other = await _user(repository, "other")
    for _ in range(5):
        await repository.create_quest(owner.id)
    await repository.create_quest(other.id)

    first, total = await repository.list_owned_quests(owner.id, 0, 2)
    last, _ = await repository.list_owned_quests(owner.id, 2, 2)
    beyond, _ = await repository.list_owned_quests(owner.id, 3, 2)

    assert total == 3
    assert len(first) == 2
    assert len(last) == 1
    assert beyond == []
    assert all(q.owner == owner.id for q in first + last)


@pytest.mark.asyncio
async def test_owned_quests_listed_in_creation_order(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    # created well within one second of each other
    created = [(await repository.create_quest(owner.id)).id for _ in range(5)]

    listed: list = []
    for page in range(3):
        quests, _ = await repository.list_owned_quests(owner.id, page, 2)
        listed += [q.id for q in quests]

    assert listed == created


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_progress_lifecycle(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    player = await _user(repository, "player")
    quest = await repository.create_quest(owner.id)

    record = await repository.create_progress(player.id, quest.id, T0)
    assert record.completed_pages == 0
    assert record.finished is False

    with pytest.raises(AlreadyJoined):
        await repository.create_progress(player.id, quest.id, T0)

    await repository.set_completed_pages(player.id, quest.id, 2)
    await repository.set_completed_pages(player.id, quest.id, 1)
    assert (await repository.get_progress(player.id, quest.id)).completed_pages == 2

    assert await repository.set_finished(player.id, quest.id, T0) is True
    assert await repository.set_finished(player.id, quest.id, T0) is False
    assert (await repository.get_progress(player.id, quest.id)).finished is True


@pytest.mark.asyncio
async def test_complete_last_page_stamps_finish_in_one_write(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    player = await _user(repository, "player")
    quest = await repository.create_quest(owner.id)
    await repository.create_progress(player.id, quest.id, T0)

    assert await repository.complete_page(player.id, quest.id, 1) is True
    assert await repository.complete_page(player.id, quest.id, 2, finished_at=T0) is True

    stored = await repository.get_progress(player.id, quest.id)
    assert stored.completed_pages == 2
    assert stored.finished is True

    # a duplicate submission of the last page changes nothing
    later = T0 + timedelta(minutes=5)
    assert await repository.complete_page(player.id, quest.id, 2, finished_at=later) is False
    assert await repository.complete_page(player.id, quest.id, 3, finished_at=later) is False
    assert await repository.get_progress(player.id, quest.id) == stored


@pytest.mark.asyncio
async def test_rating_requires_finished_record(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    player = await _user(repository, "player")
    quest = await repository.create_quest(owner.id)
    await repository.create_progress(player.id, quest.id, T0)

    assert await repository.set_rating_comment(player.id, quest.id, 5, "great") == 0

    await repository.set_finished(player.id, quest.id, T0)
    assert await repository.set_rating_comment(player.id, quest.id, 5, "great") == 1

    stored = await repository.get_progress(player.id, quest.id)
    assert (stored.rating, stored.comment) == (5, "great")


@pytest.mark.asyncio
async def test_list_progress_newest_first(repository: QuestRepository) -> None:
    owner = await _user(repository, "owner")
    player = await _user(repository, "player")
    older = await repository.create_quest(owner.id)
    newer = await repository.create_quest(owner.id)
    await repository.append_page(newer.id, 0, "p0", None)
    await repository.create_progress(player.id, older.id, T0)
    await repository.create_progress(player.id, newer.id, T0 + timedelta(hours=1))

    entries, total = await repository.list_progress(player.id, 0, 20)

    assert total == 1
    assert [e.progress.quest_id for e in entries] == [newer.id, older.id]
    assert [e.total_pages for e in entries] == [1, 0]


@pytest.mark.asyncio
async def test_average_rating_per_owner(repository: QuestRepository) -> None:
    good = await _user(repository, "good")
    meh = await _user(repository, "meh")
    players = [await _user(repository, f"player{i}") for i in range(3)]
    good_quest = await repository.create_quest(good.id)
    meh_quest = await repository.create_quest(meh.id)

    for player, quest, rating in [
        (players[0], good_quest, 5),
        (players[1], good_quest, 4),
        (players[0], meh_quest, 2),
    ]:
        await repository.create_progress(player.id, quest.id, T0)
        await repository.set_finished(player.id, quest.id, T0)
        await repository.set_rating_comment(player.id, quest.id, rating, "")
    # joined but unrated records do not count
    await repository.create_progress(players[2].id, meh_quest.id, T0)

    averages = await repository.average_rating_per_owner()

    assert averages == [(good.id, 4.5), (meh.id, 2.0)]


def test_total_pages_for() -> None:
    assert total_pages_for(0, 20) == 0
    assert total_pages_for(1, 20) == 1
    assert total_pages_for(20, 20) == 1
    assert total_pages_for(21, 20) == 2
