"""
Тесты групп: создатель, роли, компенсация при частичной записи.
"""
import pytest
from sqlalchemy import func, select

from giftcircle.core.errors import (
    AlreadyMember,
    CannotRemoveCreator,
    CreatorCannotLeave,
    EmptyText,
    NotAuthorized,
    PartialWriteError,
    TransientStoreError,
)
from giftcircle.models.models import Group, GroupMessage, WishItem
from giftcircle.services import catalog, feed, groups


class TestCreateGroup:
    async def test_creator_gets_admin_membership(self, db_session, make_profile):
        creator = await make_profile()

        group = await groups.create_group(db_session, creator, "  Семья ", "Подарки на праздники")

        assert group.name == "Семья"
        assert group.creator_id == creator
        members = await groups.list_members(db_session, group.id)
        assert [(m.member.user_id, m.member.role) for m in members] == [(creator, "admin")]

    async def test_blank_name_rejected(self, db_session, make_profile):
        creator = await make_profile()
        with pytest.raises(EmptyText):
            await groups.create_group(db_session, creator, "   ")

    async def test_membership_failure_deletes_group(self, db_session, make_profile, monkeypatch):
        creator = await make_profile()

        async def failing_membership(db, group_id, user_id, role):
            raise TransientStoreError("store unavailable")

        monkeypatch.setattr(groups, "_insert_membership", failing_membership)
        with pytest.raises(TransientStoreError):
            await groups.create_group(db_session, creator, "Друзья")

        count = await db_session.execute(select(func.count(Group.id)))
        assert count.scalar_one() == 0

    async def test_failed_compensation_is_partial_write(self, db_session, make_profile, monkeypatch):
        creator = await make_profile()

        async def failing_membership(db, group_id, user_id, role):
            raise TransientStoreError("store unavailable")

        async def failing_delete(db, group_id):
            raise TransientStoreError("store unavailable")

        monkeypatch.setattr(groups, "_insert_membership", failing_membership)
        monkeypatch.setattr(groups, "_delete_group_row", failing_delete)
        with pytest.raises(PartialWriteError) as exc_info:
            await groups.create_group(db_session, creator, "Друзья")

        assert exc_info.value.completed_step == "group_create"
        assert exc_info.value.failed_step == "group_creator_membership"


class TestMembership:
    async def test_manager_rights(self, db_session, make_profile):
        creator = await make_profile()
        member = await make_profile()
        newcomer = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, member)

        with pytest.raises(NotAuthorized):
            await groups.add_member(db_session, member, group.id, newcomer)

        await groups.change_role(db_session, creator, group.id, member, "admin")
        added = await groups.add_member(db_session, member, group.id, newcomer)
        assert added.role == "member"

    async def test_duplicate_member_is_benign(self, db_session, make_profile):
        creator = await make_profile()
        member = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, member)

        with pytest.raises(AlreadyMember) as exc_info:
            await groups.add_member(db_session, creator, group.id, member)
        assert exc_info.value.benign

    async def test_creator_cannot_be_removed_even_by_self(self, db_session, make_profile):
        creator = await make_profile()
        admin = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, admin)
        await groups.change_role(db_session, creator, group.id, admin, "admin")

        with pytest.raises(CannotRemoveCreator):
            await groups.remove_member(db_session, creator, group.id, creator)
        with pytest.raises(CannotRemoveCreator):
            await groups.remove_member(db_session, admin, group.id, creator)
        with pytest.raises(CreatorCannotLeave):
            await groups.leave_group(db_session, creator, group.id)
        with pytest.raises(NotAuthorized):
            await groups.change_role(db_session, admin, group.id, creator, "member")

    async def test_creator_status_ignores_role_column(self, db_session, make_profile):
        creator = await make_profile()
        admin = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, admin)
        await groups.change_role(db_session, creator, group.id, admin, "admin")

        with pytest.raises(NotAuthorized):
            await groups.delete_group(db_session, admin, group.id)

    async def test_member_leaves_and_is_removed(self, db_session, make_profile):
        creator = await make_profile()
        a = await make_profile()
        b = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, a)
        await groups.add_member(db_session, creator, group.id, b)

        await groups.leave_group(db_session, a, group.id)
        await groups.remove_member(db_session, creator, group.id, b)

        assert not await groups.is_member(db_session, group.id, a)
        assert not await groups.is_member(db_session, group.id, b)

    async def test_user_groups_with_counts(self, db_session, make_profile):
        creator = await make_profile()
        member = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, member)

        summaries = await groups.list_user_groups(db_session, member)
        assert [(s.group.id, s.member_count, s.role) for s in summaries] == [(group.id, 2, "member")]

    async def test_delete_group_cascades(self, db_session, make_profile):
        creator = await make_profile()
        member = await make_profile()
        group = await groups.create_group(db_session, creator, "Коллеги")
        await groups.add_member(db_session, creator, group.id, member)
        await catalog.create_item(db_session, member, {"title": "Кружка", "group_id": group.id})
        await feed.post_chat_message(db_session, group.id, member, "Привет!")

        await groups.delete_group(db_session, creator, group.id)

        for model in (Group, WishItem, GroupMessage):
            count = await db_session.execute(select(func.count(model.id)))
            assert count.scalar_one() == 0
