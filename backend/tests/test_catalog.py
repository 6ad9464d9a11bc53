"""
Тесты каталога: видимость, коллекции, групповые списки и фильтры.
"""
import pytest

from giftcircle.core.errors import EmptyText, InvalidReference, NotAuthorized, NotFound, ValidationFailed
from giftcircle.services import catalog, friendships, groups, ledger


async def _befriend(db, a: str, b: str) -> None:
    row = await friendships.send_request(db, a, b)
    await friendships.accept(db, row.id, b)


async def _three_items(db, owner: str) -> dict[str, int]:
    ids = {}
    for visibility in ("public", "friends", "private"):
        item = await catalog.create_item(db, owner, {"title": f"Вещь {visibility}", "visibility": visibility})
        ids[visibility] = item.id
    return ids


class TestVisibility:
    async def test_visibility_matrix(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        stranger = await make_profile()
        await _befriend(db_session, owner, friend)
        ids = await _three_items(db_session, owner)

        def titles(items):
            return {item.id for item in items}

        assert titles(await catalog.list_visible(db_session, owner, owner)) == set(ids.values())
        assert titles(await catalog.list_visible(db_session, friend, owner)) == {ids["public"], ids["friends"]}
        assert titles(await catalog.list_visible(db_session, stranger, owner)) == {ids["public"]}
        assert titles(await catalog.list_visible(db_session, None, owner)) == {ids["public"]}

    async def test_hidden_item_looks_missing(self, db_session, make_profile):
        owner = await make_profile()
        stranger = await make_profile()
        ids = await _three_items(db_session, owner)

        with pytest.raises(NotFound):
            await catalog.require_visible(db_session, stranger, ids["private"])
        assert (await catalog.require_visible(db_session, stranger, ids["public"])).id == ids["public"]

    async def test_default_visibility_is_friends(self, db_session, make_profile):
        owner = await make_profile()
        item = await catalog.create_item(db_session, owner, {"title": "Книга"})
        assert item.visibility == "friends"
        assert item.priority == "medium"
        assert item.reserved_count == 0

    async def test_group_items_need_membership(self, db_session, make_profile):
        owner = await make_profile()
        outsider = await make_profile()
        group = await groups.create_group(db_session, owner, "Семья")
        item = await catalog.create_item(db_session, owner, {"title": "Плед", "group_id": group.id})

        assert [i.id for i in await catalog.list_visible(db_session, owner, owner, group_id=group.id)] == [item.id]
        assert await catalog.list_visible(db_session, owner, owner) == []
        with pytest.raises(NotAuthorized):
            await catalog.list_visible(db_session, outsider, owner, group_id=group.id)
        with pytest.raises(NotAuthorized):
            await catalog.create_item(db_session, outsider, {"title": "Плед", "group_id": group.id})

    async def test_reads_repair_drifted_counters(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await catalog.create_item(db_session, owner, {"title": "Чайник", "visibility": "public"})
        await ledger.reserve(db_session, item.id, friend)
        item.reserved_count = 7
        await db_session.commit()

        items = await catalog.list_visible(db_session, friend, owner)
        assert items[0].reserved_count == 1


class TestItems:
    async def test_create_requires_title(self, db_session, make_profile):
        owner = await make_profile()
        with pytest.raises(EmptyText):
            await catalog.create_item(db_session, owner, {"title": "  "})
        with pytest.raises(EmptyText):
            await catalog.create_item(db_session, owner, {})

    async def test_negative_price_rejected(self, db_session, make_profile):
        owner = await make_profile()
        with pytest.raises(ValidationFailed):
            await catalog.create_item(db_session, owner, {"title": "Стол", "estimated_price": -1})

    async def test_collection_must_belong_to_owner(self, db_session, make_profile):
        owner = await make_profile()
        other = await make_profile()
        foreign = await catalog.create_collection(db_session, other, "Чужая")

        with pytest.raises(InvalidReference):
            await catalog.create_item(db_session, owner, {"title": "Лампа", "collection_id": foreign.id})

    async def test_only_owner_edits(self, db_session, make_profile):
        owner = await make_profile()
        other = await make_profile()
        item = await catalog.create_item(db_session, owner, {"title": "Лампа"})

        with pytest.raises(NotAuthorized):
            await catalog.update_item(db_session, other, item.id, {"title": "Моя лампа"})
        with pytest.raises(NotAuthorized):
            await catalog.delete_item(db_session, other, item.id)

        updated = await catalog.update_item(
            db_session, owner, item.id, {"title": " Настольная лампа ", "priority": "high", "estimated_price": 1500}
        )
        assert updated.title == "Настольная лампа"
        assert updated.priority == "high"

    async def test_price_cannot_drop_below_pledged(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await catalog.create_item(
            db_session, owner, {"title": "Велосипед", "visibility": "public", "estimated_price": 1000}
        )
        await ledger.contribute(db_session, item.id, friend, 600)

        with pytest.raises(ValidationFailed):
            await catalog.update_item(db_session, owner, item.id, {"estimated_price": 500})

    async def test_group_context_is_fixed(self, db_session, make_profile):
        owner = await make_profile()
        group = await groups.create_group(db_session, owner, "Семья")
        item = await catalog.create_item(db_session, owner, {"title": "Плед"})

        with pytest.raises(ValidationFailed):
            await catalog.update_item(db_session, owner, item.id, {"group_id": group.id})

    async def test_own_items_filters(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        collection = await catalog.create_collection(db_session, owner, "День рождения", "🎂")
        priced = await catalog.create_item(
            db_session, owner, {"title": "Наушники", "estimated_price": 3000, "visibility": "public"}
        )
        pictured = await catalog.create_item(
            db_session, owner, {"title": "Постер", "image_url": "https://example.com/p.png", "collection_id": collection.id}
        )
        await ledger.reserve(db_session, priced.id, friend)

        def ids(items):
            return [item.id for item in items]

        assert ids(await catalog.list_own_items(db_session, owner, catalog.ItemFilters(search="Наушн"))) == [priced.id]
        assert ids(await catalog.list_own_items(db_session, owner, catalog.ItemFilters(search="Постер"))) == [pictured.id]
        assert ids(await catalog.list_own_items(db_session, owner, catalog.ItemFilters(only_with_price=True))) == [priced.id]
        assert ids(await catalog.list_own_items(db_session, owner, catalog.ItemFilters(only_with_image=True))) == [pictured.id]
        assert ids(await catalog.list_own_items(db_session, owner, catalog.ItemFilters(only_reserved=True))) == [priced.id]
        assert ids(
            await catalog.list_own_items(db_session, owner, catalog.ItemFilters(collection_id=collection.id))
        ) == [pictured.id]


class TestCollections:
    async def test_delete_collection_keeps_items(self, db_session, make_profile):
        owner = await make_profile()
        collection = await catalog.create_collection(db_session, owner, "Новый год")
        item = await catalog.create_item(db_session, owner, {"title": "Гирлянда", "collection_id": collection.id})

        detached = await catalog.delete_collection(db_session, owner, collection.id)

        assert detached == 1
        survivor = await catalog.get_item(db_session, item.id)
        await db_session.refresh(survivor)
        assert survivor.collection_id is None
        assert await catalog.list_collections(db_session, owner) == []

    async def test_collection_crud(self, db_session, make_profile):
        owner = await make_profile()
        other = await make_profile()
        collection = await catalog.create_collection(db_session, owner, "Свадьба")
        assert collection.emoji == "🎁"

        updated = await catalog.update_collection(db_session, owner, collection.id, {"name": "Свадьба Оли", "emoji": "💍"})
        assert (updated.name, updated.emoji) == ("Свадьба Оли", "💍")

        with pytest.raises(NotAuthorized):
            await catalog.update_collection(db_session, other, collection.id, {"name": "Моя"})
        with pytest.raises(EmptyText):
            await catalog.update_collection(db_session, owner, collection.id, {"name": "  "})
        with pytest.raises(NotFound):
            await catalog.delete_collection(db_session, owner, collection.id + 100)
