"""
Тесты леджера: брони, складчины и пересчёт кешированных счётчиков.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select, text

from giftcircle.core.config import settings
from giftcircle.core.errors import (
    AlreadyReserved,
    ExceedsTarget,
    InvalidAmount,
    NotAuthorized,
    NotFound,
    SelfReservation,
    TransientStoreError,
    ValidationFailed,
)
from giftcircle.models.models import Contribution, Notification, Reservation
from giftcircle.services import catalog, ledger, notifications


async def _public_item(db, owner_id: str, price=None, **attrs):
    return await catalog.create_item(
        db,
        owner_id,
        {"title": "Фотоаппарат", "estimated_price": price, "visibility": "public", **attrs},
    )


class TestContributions:
    async def test_boundary_scenario(self, db_session, make_profile):
        """600 + 300 = 900, обновление до 700 даёт ровно 1000, 701 отклоняется."""
        owner = await make_profile()
        b = await make_profile()
        c = await make_profile()
        item = await _public_item(db_session, owner, price=1000)

        await ledger.contribute(db_session, item.id, b, 600)
        outcome = await ledger.contribute(db_session, item.id, c, 300)
        assert outcome.state.contributed_amount == Decimal("900.00")

        with pytest.raises(ExceedsTarget) as exc_info:
            await ledger.contribute(db_session, item.id, b, 701)
        assert exc_info.value.remaining == 700.0

        outcome = await ledger.contribute(db_session, item.id, b, 700)
        assert outcome.state.contributed_amount == Decimal("1000.00")
        assert outcome.state.remaining == Decimal("0.00")
        assert not outcome.state.over_target
        assert outcome.warnings == []

        await db_session.refresh(item)
        assert Decimal(str(item.contributed_amount)) == Decimal("1000.00")

    async def test_repeat_contribution_replaces_amount(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner, price=500)

        await ledger.contribute(db_session, item.id, friend, 100)
        outcome = await ledger.contribute(db_session, item.id, friend, 250, note="от всей души")

        assert outcome.state.contributed_amount == Decimal("250.00")
        contributors = await ledger.list_contributors(db_session, item.id, friend)
        assert len(contributors) == 1
        assert Decimal(str(contributors[0].contribution.amount)) == Decimal("250.00")
        assert contributors[0].contribution.note == "от всей души"

    async def test_contributor_without_profile_still_listed(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner, price=500)
        await ledger.contribute(db_session, item.id, friend, 100)

        # a row left behind by an account whose profile is gone
        await db_session.execute(text("PRAGMA foreign_keys=OFF"))
        db_session.add(Contribution(item_id=item.id, user_id="acct-gone", amount=Decimal("50.00")))
        await db_session.commit()

        contributors = await ledger.list_contributors(db_session, item.id, friend)
        state = await ledger.reconcile_item(db_session, item.id)

        assert sorted(entry.contribution.user_id for entry in contributors) == sorted(["acct-gone", friend])
        assert [entry.profile for entry in contributors if entry.contribution.user_id == "acct-gone"] == [None]
        assert sum(Decimal(str(entry.contribution.amount)) for entry in contributors) == state.contributed_amount

    @pytest.mark.parametrize("amount", [0, -5, "abc"])
    async def test_non_positive_amount_rejected(self, db_session, make_profile, amount):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner, price=500)

        with pytest.raises(InvalidAmount):
            await ledger.contribute(db_session, item.id, friend, amount)

    async def test_no_price_means_no_cap(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)

        outcome = await ledger.contribute(db_session, item.id, friend, 100000)
        assert outcome.state.target is None
        assert outcome.state.remaining is None
        assert not outcome.state.over_target

    async def test_owner_contribution_follows_setting(self, db_session, make_profile, monkeypatch):
        owner = await make_profile()
        item = await _public_item(db_session, owner, price=100)

        outcome = await ledger.contribute(db_session, item.id, owner, 10)
        assert outcome.state.contributed_amount == Decimal("10.00")

        monkeypatch.setattr(settings, "allow_owner_contributions", False)
        with pytest.raises(NotAuthorized):
            await ledger.contribute(db_session, item.id, owner, 20)

    async def test_racing_contributors_overshoot_is_detected(self, db_session, make_profile):
        """Проверка лимита рекомендательная: два параллельных взноса могут превысить цель."""
        owner = await make_profile()
        a = await make_profile()
        b = await make_profile()
        item = await _public_item(db_session, owner, price=1000)

        check_a = await ledger.check_contribution(db_session, item, a, 600)
        check_b = await ledger.check_contribution(db_session, item, b, 600)
        await ledger.write_contribution(db_session, item.id, a, check_a.amount)
        await ledger.write_contribution(db_session, item.id, b, check_b.amount)

        state = await ledger.reconcile_item(db_session, item.id)
        assert state.contributed_amount == Decimal("1200.00")
        assert state.over_target
        assert state.corrected
        assert state.remaining == Decimal("0.00")

    async def test_contribution_notifies_owner(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile(display_name="Аня")
        item = await _public_item(db_session, owner, price=1000)

        await ledger.contribute(db_session, item.id, friend, 300)

        inbox = await notifications.list_recent(db_session, owner)
        assert [n.type for n in inbox] == ["contribution"]
        assert "Аня" in inbox[0].message

    async def test_withdraw_recomputes_amount(self, db_session, make_profile):
        owner = await make_profile()
        a = await make_profile()
        b = await make_profile()
        item = await _public_item(db_session, owner, price=1000)
        await ledger.contribute(db_session, item.id, a, 400)
        await ledger.contribute(db_session, item.id, b, 100)

        outcome = await ledger.withdraw_contribution(db_session, item.id, a)
        assert outcome.state.contributed_amount == Decimal("100.00")

        with pytest.raises(NotFound):
            await ledger.withdraw_contribution(db_session, item.id, a)

    async def test_hidden_item_cannot_be_funded(self, db_session, make_profile):
        owner = await make_profile()
        stranger = await make_profile()
        item = await _public_item(db_session, owner, price=100, visibility="private")

        with pytest.raises(NotFound):
            await ledger.contribute(db_session, item.id, stranger, 10)


class TestReservations:
    async def test_reserve_and_cancel_keep_counter_in_line(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)

        outcome = await ledger.reserve(db_session, item.id, friend, note="  куплю в пятницу ")
        assert outcome.state.reserved_count == 1
        assert outcome.record.note == "куплю в пятницу"
        await db_session.refresh(item)
        assert item.reserved_count == 1

        outcome = await ledger.cancel_reservation(db_session, outcome.record.id, friend)
        assert outcome.state.reserved_count == 0
        await db_session.refresh(item)
        assert item.reserved_count == 0

    async def test_self_reservation_rejected(self, db_session, make_profile):
        owner = await make_profile()
        item = await _public_item(db_session, owner)

        with pytest.raises(SelfReservation):
            await ledger.reserve(db_session, item.id, owner)

    async def test_second_reservation_is_benign_and_counter_untouched(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)
        await ledger.reserve(db_session, item.id, friend)

        with pytest.raises(AlreadyReserved) as exc_info:
            await ledger.reserve(db_session, item.id, friend)
        assert exc_info.value.benign

        state = await ledger.reconcile_item(db_session, item.id)
        assert state.reserved_count == 1
        assert not state.corrected

    async def test_several_people_can_reserve(self, db_session, make_profile):
        owner = await make_profile()
        a = await make_profile()
        b = await make_profile()
        item = await _public_item(db_session, owner)

        await ledger.reserve(db_session, item.id, a)
        outcome = await ledger.reserve(db_session, item.id, b)
        assert outcome.state.reserved_count == 2

    async def test_reservation_is_not_announced_to_owner(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)

        await ledger.reserve(db_session, item.id, friend)

        assert await notifications.list_recent(db_session, owner) == []

    async def test_only_reserver_can_cancel(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)
        outcome = await ledger.reserve(db_session, item.id, friend)

        with pytest.raises(NotAuthorized):
            await ledger.cancel_reservation(db_session, outcome.record.id, owner)

    async def test_completed_is_terminal(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)
        outcome = await ledger.reserve(db_session, item.id, friend)
        reservation_id = outcome.record.id

        completed = await ledger.mark_completed(db_session, reservation_id, friend)
        assert completed.record.status == "completed"
        assert completed.state.reserved_count == 0

        again = await ledger.mark_completed(db_session, reservation_id, friend)
        assert again.record.status == "completed"

        with pytest.raises(ValidationFailed):
            await ledger.cancel_reservation(db_session, reservation_id, friend)

    async def test_counter_failure_is_reported_and_repaired_on_read(self, db_session, make_profile, monkeypatch):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)

        async def failing_sync(db, item_id):
            raise TransientStoreError("store unavailable")

        monkeypatch.setattr(ledger, "_sync_aggregates", failing_sync)
        outcome = await ledger.reserve(db_session, item.id, friend)

        assert outcome.warnings == [ledger.AGGREGATE_STALE]
        assert outcome.state.reserved_count == 1
        await db_session.refresh(item)
        assert item.reserved_count == 0

        monkeypatch.undo()
        state = await ledger.reconcile_item(db_session, item.id)
        assert state.corrected
        assert state.reserved_count == 1
        await db_session.refresh(item)
        assert item.reserved_count == 1

    async def test_reservation_listings(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner)
        await ledger.reserve(db_session, item.id, friend)

        mine = await ledger.list_my_reservations(db_session, friend)
        assert len(mine) == 1
        assert mine[0].item.id == item.id
        assert mine[0].owner.user_id == owner

        assert await ledger.list_item_reservations(db_session, item.id, owner) == []
        seen_by_friend = await ledger.list_item_reservations(db_session, item.id, friend)
        assert [r.reserved_by for r in seen_by_friend] == [friend]

    async def test_deleting_item_removes_ledger_rows(self, db_session, make_profile):
        owner = await make_profile()
        friend = await make_profile()
        item = await _public_item(db_session, owner, price=100)
        await ledger.reserve(db_session, item.id, friend)
        await ledger.contribute(db_session, item.id, friend, 50)

        await catalog.delete_item(db_session, owner, item.id)

        remaining = await db_session.execute(select(func.count(Reservation.id)))
        assert remaining.scalar_one() == 0
        inbox = await db_session.execute(select(func.count(Notification.id)))
        assert inbox.scalar_one() == 1
