import pytest

from bites import accounts
from bites.cache import SessionCache, reset_key, session_key
from bites.errors import AuthError, Conflict, DependencyUnavailable, ValidationFailed
from bites.models import CustomerProfile, Role, User
from bites.schemas import RegisterIn

from conftest import PASSWORD


def _register(db, cache, emailer, settings, **overrides):
    data = {
        "email": "Asha@Example.com",
        "password": "Passw0rd",
        "first_name": "Asha",
        "last_name": "Rao",
        "phone_number": "9876543210",
    }
    data.update(overrides)
    return accounts.register(db, cache, emailer, settings, RegisterIn(**data))


class TestRegister:

    def test_creates_user_profile_session_and_sends_verification(self, db, cache, emailer, settings):
        outcome = _register(db, cache, emailer, settings)

        assert not outcome.degraded
        user = outcome.value.user
        assert user.email == "asha@example.com"
        assert user.is_verified is False
        assert outcome.value.refresh_token
        assert db.query(CustomerProfile).filter(CustomerProfile.user_id == user.id).count() == 1
        assert cache.get(session_key(user.id))["email"] == "asha@example.com"
        assert emailer.sent[-1][1] == "verify_email"
        assert emailer.sent[-1][2]["user_name"] == "Asha Rao"

    def test_duplicate_email_or_phone(self, db, cache, emailer, settings):
        _register(db, cache, emailer, settings)
        with pytest.raises(Conflict) as e:
            _register(db, cache, emailer, settings, phone_number="9000000001")
        assert e.value.code == "USER_EXISTS"
        with pytest.raises(Conflict):
            _register(db, cache, emailer, settings, email="other@example.com")

    def test_partners_get_no_customer_profile(self, db, cache, emailer, settings):
        outcome = _register(db, cache, emailer, settings, role="restaurant_partner")
        assert db.query(CustomerProfile).filter(CustomerProfile.user_id == outcome.value.user.id).count() == 0

    def test_side_effect_failures_are_reported_not_raised(self, db, emailer, settings):
        emailer.fail = True
        outcome = _register(db, SessionCache(None), emailer, settings)
        assert outcome.value.user.id is not None
        assert outcome.failed_side_effects == ["verification_token", "session_cache"]

    def test_failed_verification_email_is_reported(self, db, cache, emailer, settings):
        emailer.fail = True
        outcome = _register(db, cache, emailer, settings)
        assert "verification_email" in outcome.failed_side_effects


class TestLogin:

    def test_wrong_password_caches_nothing(self, db, cache, settings, make_user):
        user = make_user()
        with pytest.raises(AuthError) as e:
            accounts.login(db, cache, settings, user.email, "WrongPass1")
        assert e.value.code == "INVALID_CREDENTIALS"
        assert cache.get(session_key(user.id)) is None

    def test_unknown_email(self, db, cache, settings):
        with pytest.raises(AuthError) as e:
            accounts.login(db, cache, settings, "nobody@example.com", PASSWORD)
        assert e.value.code == "INVALID_CREDENTIALS"

    def test_inactive_account(self, db, cache, settings, make_user):
        user = make_user(active=False)
        with pytest.raises(AuthError) as e:
            accounts.login(db, cache, settings, user.email, PASSWORD)
        assert e.value.code == "ACCOUNT_INACTIVE"

    def test_account_without_password_cannot_log_in(self, db, cache, settings, make_user):
        user = make_user()
        user.password_hash = None
        db.commit()
        with pytest.raises(AuthError) as e:
            accounts.login(db, cache, settings, user.email, PASSWORD)
        assert e.value.code == "INVALID_CREDENTIALS"

    def test_success_caches_session(self, db, cache, settings, make_user):
        user = make_user()
        outcome = accounts.login(db, cache, settings, user.email.upper(), PASSWORD)
        assert outcome.value.access_token and outcome.value.refresh_token
        assert cache.get(session_key(user.id)) == {
            "userId": user.id,
            "email": user.email,
            "role": "customer",
            "isVerified": True,
        }


class TestSingleUseTokens:

    def test_verification_token_works_once(self, db, cache, emailer, settings):
        outcome = _register(db, cache, emailer, settings)
        token = emailer.last_token("verify_email")

        verified = accounts.verify_email(db, cache, settings, token)
        assert verified.value.is_verified is True
        assert cache.get(session_key(outcome.value.user.id))["isVerified"] is True

        with pytest.raises(ValidationFailed) as e:
            accounts.verify_email(db, cache, settings, token)
        assert e.value.code == "INVALID_TOKEN"

    def test_reset_token_works_once_and_drops_session(self, db, cache, emailer, settings, make_user):
        user = make_user()
        accounts.login(db, cache, settings, user.email, PASSWORD)

        accounts.forgot_password(db, cache, emailer, settings, user.email)
        token = emailer.last_token("reset_password")
        accounts.reset_password(db, cache, token, "NewPass9")

        assert cache.get(session_key(user.id)) is None
        accounts.login(db, cache, settings, user.email, "NewPass9")
        with pytest.raises(ValidationFailed) as e:
            accounts.reset_password(db, cache, token, "Another9")
        assert e.value.code == "INVALID_TOKEN"


class TestForgotPassword:

    def test_unknown_email_is_silent(self, db, cache, emailer, settings):
        accounts.forgot_password(db, cache, emailer, settings, "ghost@example.com")
        assert emailer.sent == []

    def test_email_failure_is_raised_and_token_dropped(self, db, cache, emailer, settings, make_user, redis_client):
        user = make_user()
        emailer.fail = True
        with pytest.raises(DependencyUnavailable) as e:
            accounts.forgot_password(db, cache, emailer, settings, user.email)
        assert e.value.code == "EMAIL_SEND_FAILED"
        assert list(redis_client.scan_iter(match="reset:*")) == []

    def test_cache_down_is_raised(self, db, emailer, settings, make_user):
        user = make_user()
        with pytest.raises(DependencyUnavailable):
            accounts.forgot_password(db, SessionCache(None), emailer, settings, user.email)


class TestRefreshAndAdmin:

    def test_refresh_requires_token(self, db, cache, settings):
        with pytest.raises(AuthError) as e:
            accounts.refresh(db, cache, settings, None)
        assert e.value.code == "NO_REFRESH_TOKEN"

    def test_refresh_rejects_access_token(self, db, cache, settings, make_user):
        user = make_user()
        access = accounts.login(db, cache, settings, user.email, PASSWORD).value.access_token
        with pytest.raises(AuthError) as e:
            accounts.refresh(db, cache, settings, access)
        assert e.value.code == "INVALID_TOKEN"

    def test_deactivation_drops_only_that_session(self, db, cache, settings, make_user):
        users = [make_user() for _ in range(10)]
        for u in users:
            accounts.login(db, cache, settings, u.email, PASSWORD)

        accounts.set_active(db, cache, users[0].id, False)
        assert cache.get(session_key(users[0].id)) is None
        assert cache.get(session_key(users[9].id)) is not None
        assert db.get(User, users[0].id).is_active is False

    def test_flush_sessions(self, db, cache, settings, make_user):
        for _ in range(3):
            u = make_user()
            accounts.login(db, cache, settings, u.email, PASSWORD)
        cache.set(reset_key("keep"), 1, 60)
        assert accounts.flush_sessions(cache) == 3
        assert cache.get(reset_key("keep")) == 1

    def test_logout_with_garbage_token_is_fine(self, cache):
        accounts.logout(cache, "not-a-jwt")
        accounts.logout(cache, None)


def test_role_constant_values():
    assert {r.value for r in Role} == {"customer", "admin", "restaurant_partner", "delivery_partner"}
