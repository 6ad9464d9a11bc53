"""
Тесты графа дружбы: заявки, принятие, удаление и асимметричные состояния.
"""
import pytest
from sqlalchemy import select

from giftcircle.core.errors import DuplicateEdge, NotAuthorized, TransientStoreError, ValidationFailed
from giftcircle.models.models import Friendship
from giftcircle.services import friendships, notifications


async def _rows(db):
    result = await db.execute(select(Friendship).order_by(Friendship.id))
    return [(r.user_id, r.friend_id, r.status) for r in result.scalars().all()]


class TestRequests:
    async def test_request_creates_single_pending_row(self, db_session, make_profile):
        d = await make_profile(display_name="Дима")
        e = await make_profile()

        row = await friendships.send_request(db_session, d, e)

        assert row.status == "pending"
        assert row.circle == "friends"
        assert await _rows(db_session) == [(d, e, "pending")]
        inbox = await notifications.list_recent(db_session, e)
        assert inbox[0].type == "friend_request"
        assert "Дима" in inbox[0].message

    async def test_duplicate_in_either_direction(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        await friendships.send_request(db_session, d, e)

        with pytest.raises(DuplicateEdge) as exc_info:
            await friendships.send_request(db_session, d, e)
        assert exc_info.value.benign
        with pytest.raises(DuplicateEdge):
            await friendships.send_request(db_session, e, d)

    async def test_request_to_self_rejected(self, db_session, make_profile):
        d = await make_profile()
        with pytest.raises(ValidationFailed):
            await friendships.send_request(db_session, d, d)

    async def test_only_addressee_accepts(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)

        with pytest.raises(NotAuthorized):
            await friendships.accept(db_session, row.id, d)


class TestAcceptAndRemove:
    async def test_accept_writes_both_directions(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e, circle="family")

        outcome = await friendships.accept(db_session, row.id, e)

        assert outcome.symmetric
        assert sorted(await _rows(db_session)) == sorted([(d, e, "accepted"), (e, d, "accepted")])
        assert await friendships.is_friend(db_session, d, e)
        assert await friendships.is_friend(db_session, e, d)
        friends_of_e = await friendships.list_friends(db_session, e)
        assert [entry.profile.user_id for entry in friends_of_e] == [d]
        assert friends_of_e[0].friendship.circle == "family"

    async def test_existing_mirror_is_benign(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)
        db_session.add(Friendship(user_id=e, friend_id=d, status="accepted"))
        await db_session.commit()

        outcome = await friendships.accept(db_session, row.id, e)

        assert outcome.symmetric
        assert outcome.friendship.status == "accepted"
        assert len(await _rows(db_session)) == 2

    async def test_mirror_failure_is_reported(self, db_session, make_profile, monkeypatch):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)

        async def failing_mirror(db, requester_id, addressee_id, circle):
            raise TransientStoreError("store unavailable")

        monkeypatch.setattr(friendships, "_insert_mirror", failing_mirror)
        outcome = await friendships.accept(db_session, row.id, e)

        assert outcome.warnings == [friendships.MIRROR_MISSING]
        assert not outcome.symmetric
        assert outcome.friendship.status == "accepted"
        assert await friendships.is_friend(db_session, d, e)
        assert not await friendships.is_friend(db_session, e, d)

    async def test_single_row_delete_leaves_graph_asymmetric(self, db_session, make_profile):
        """Удаление строки E→D оставляет D→E принятой: граф становится асимметричным."""
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)
        await friendships.accept(db_session, row.id, e)
        mirror = await friendships.edge_between_directed(db_session, e, d)

        await friendships.reject(db_session, mirror.id, e)

        assert await _rows(db_session) == [(d, e, "accepted")]
        assert await friendships.is_friend(db_session, d, e)
        assert not await friendships.is_friend(db_session, e, d)

    async def test_remove_deletes_both_rows(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)
        await friendships.accept(db_session, row.id, e)

        outcome = await friendships.remove(db_session, row.id, d, e)

        assert outcome.symmetric
        assert await _rows(db_session) == []

    async def test_remove_by_addressee_through_requester_row(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)
        await friendships.accept(db_session, row.id, e)

        outcome = await friendships.remove(db_session, row.id, e, d)

        assert outcome.symmetric
        assert outcome.warnings == []
        assert await _rows(db_session) == []
        assert not await friendships.is_friend(db_session, e, d)

    async def test_remove_mirror_failure_is_reported(self, db_session, make_profile, monkeypatch):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)
        await friendships.accept(db_session, row.id, e)

        async def failing_delete(db, user_id, friend_id):
            raise TransientStoreError("store unavailable")

        monkeypatch.setattr(friendships, "_delete_mirror", failing_delete)
        outcome = await friendships.remove(db_session, row.id, d, e)

        assert outcome.warnings == [friendships.MIRROR_NOT_REMOVED]
        assert await _rows(db_session) == [(e, d, "accepted")]

    async def test_reject_pending_request(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        row = await friendships.send_request(db_session, d, e)
        assert [entry.profile.user_id for entry in await friendships.list_pending_requests(db_session, e)] == [d]
        assert [entry.profile.user_id for entry in await friendships.list_outgoing_requests(db_session, d)] == [e]

        await friendships.reject(db_session, row.id, e)

        assert await friendships.list_pending_requests(db_session, e) == []
        # a fresh request is possible again
        await friendships.send_request(db_session, d, e)

    async def test_outsider_cannot_delete(self, db_session, make_profile):
        d = await make_profile()
        e = await make_profile()
        outsider = await make_profile()
        row = await friendships.send_request(db_session, d, e)

        with pytest.raises(NotAuthorized):
            await friendships.reject(db_session, row.id, outsider)
