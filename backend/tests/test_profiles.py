"""
Тесты профилей: ленивое создание, username, валюта, публичная ссылка.
"""
import re

import pytest

from giftcircle.core.errors import InvalidUsername, NotAuthorized, NotFound, UsernameTaken, ValidationFailed
from giftcircle.services import profiles


class TestEnsureProfile:
    async def test_created_on_first_sight(self, db_session):
        profile = await profiles.ensure_profile(db_session, "acct-new", display_name="Маша")

        assert re.fullmatch(r"user_[0-9a-f]{8}", profile.username)
        assert profile.currency == "UAH"
        assert profile.display_name == "Маша"
        again = await profiles.ensure_profile(db_session, "acct-new")
        assert again.username == profile.username


class TestUpdateProfile:
    async def test_username_normalised(self, db_session, make_profile):
        me = await make_profile()
        profile = await profiles.update_profile(db_session, me, me, {"username": "  @Gift_Lover "})
        assert profile.username == "gift_lover"
        assert (await profiles.get_by_username(db_session, "GIFT_LOVER")).user_id == me

    async def test_username_taken_is_hard_conflict(self, db_session, make_profile):
        me = await make_profile()
        await make_profile(username="taken_name")

        with pytest.raises(UsernameTaken) as exc_info:
            await profiles.update_profile(db_session, me, me, {"username": "taken_name"})
        assert not exc_info.value.benign

    @pytest.mark.parametrize("username", ["ab", "имя", "with space", "x" * 31])
    async def test_invalid_username(self, db_session, make_profile, username):
        me = await make_profile()
        with pytest.raises(InvalidUsername):
            await profiles.update_profile(db_session, me, me, {"username": username})

    async def test_currency_and_text_fields(self, db_session, make_profile):
        me = await make_profile()
        profile = await profiles.update_profile(
            db_session, me, me, {"currency": "usd", "bio": "  ", "display_name": " Оля "}
        )
        assert profile.currency == "USD"
        assert profile.bio is None
        assert profile.display_name == "Оля"

        with pytest.raises(ValidationFailed):
            await profiles.update_profile(db_session, me, me, {"currency": "JPY"})

    async def test_only_owner_edits(self, db_session, make_profile):
        me = await make_profile()
        other = await make_profile()
        with pytest.raises(NotAuthorized):
            await profiles.update_profile(db_session, other, me, {"bio": "взлом"})


class TestPublicLink:
    async def test_token_works_only_when_public(self, db_session, make_profile):
        me = await make_profile()
        profile = await profiles.get_profile(db_session, me)
        token = profile.wishlist_token

        with pytest.raises(NotFound):
            await profiles.get_public_by_token(db_session, token)

        await profiles.update_profile(db_session, me, me, {"wishlist_public": True})
        assert (await profiles.get_public_by_token(db_session, token)).user_id == me

        rotated = await profiles.rotate_wishlist_token(db_session, me)
        assert rotated.wishlist_token != token
        with pytest.raises(NotFound):
            await profiles.get_public_by_token(db_session, token)


@pytest.mark.parametrize(
    ("price", "currency", "expected"),
    [
        (1500, "UAH", "≈ ₴1 500"),
        (19.99, "USD", "≈ $19.99"),
        (250, "pln", "≈ zł250"),
        (None, "EUR", ""),
    ],
)
def test_format_price(price, currency, expected):
    assert profiles.format_price(price, currency) == expected
