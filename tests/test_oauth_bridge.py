"""
tests/test_oauth_bridge.py -- Unit tests for auth/oauth.py.

Covers the account-linking state machine in resolve_oauth_user():
  - missing email              -> MissingEmail, no user created
  - returning linked identity  -> same user, no writes
  - existing password account  -> linked in place, role and name kept
  - account linked elsewhere   -> ProviderConflict
  - deactivated account        -> AccountDeactivated, row left unlinked
  - first sign-in              -> new OAuth-only student
  - store failure on create    -> UserCreationFailed
And the profile helpers: Google token normalization and display-name fallback.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import AccountDeactivated, MissingEmail, ProviderConflict, Unauthenticated, UserCreationFailed
from auth.models import OAuthProfile
from auth.oauth import GOOGLE, build_oauth, display_name_for, profile_from_google_token, resolve_oauth_user
from core.config import Settings


def _profile(subject: str = "g-123", email: str | None = "a@x.com", **kwargs) -> OAuthProfile:
    return OAuthProfile(
        provider=GOOGLE,
        subject=subject,
        emails=[email] if email else [],
        display_name=kwargs.pop("display_name", "Ann Google"),
        photos=kwargs.pop("photos", ["https://img.example/ann.png"]),
        **kwargs,
    )


class TestResolveOAuthUser:
    def test_missing_email(self, user_store) -> None:
        with pytest.raises(MissingEmail):
            resolve_oauth_user(user_store, _profile(email=None))
        assert len(user_store.list_users()) == 0

    def test_links_existing_password_account(self, user_store, make_user) -> None:
        existing = make_user(email="a@x.com", name="Ann", role="instructor")
        user = resolve_oauth_user(user_store, _profile())
        assert user.id == existing.id
        assert user.oauth_provider == GOOGLE
        assert user.oauth_id == "g-123"
        # Linking keeps local profile data and the password.
        assert user.name == "Ann"
        assert user.role == "instructor"
        assert user.has_password
        assert user.avatar_url == "https://img.example/ann.png"
        assert len(user_store.list_users()) == 1

    def test_linking_keeps_existing_avatar(self, user_store, make_user) -> None:
        make_user(email="a@x.com", avatar_url="https://img.example/mine.png")
        user = resolve_oauth_user(user_store, _profile())
        assert user.avatar_url == "https://img.example/mine.png"

    def test_returning_user_found_by_subject(self, user_store, make_user) -> None:
        existing = make_user(email="a@x.com")
        resolve_oauth_user(user_store, _profile())
        # Google now reports a different primary email; the subject still matches.
        again = resolve_oauth_user(user_store, _profile(email="ann.new@x.com"))
        assert again.id == existing.id
        assert again.email == "a@x.com"
        assert len(user_store.list_users()) == 1

    def test_provider_conflict(self, user_store, make_user) -> None:
        make_user(email="a@x.com", oauth_provider=GOOGLE, oauth_id="g-1")
        with pytest.raises(ProviderConflict):
            resolve_oauth_user(user_store, _profile(subject="g-2"))

    def test_deactivated_account_not_linked(self, user_store, make_user) -> None:
        existing = make_user(email="a@x.com", is_active=False)
        with pytest.raises(AccountDeactivated):
            resolve_oauth_user(user_store, _profile())
        stored = user_store.find_by_id(existing.id)
        assert stored.oauth_id is None
        assert stored.avatar_url is None
        assert stored.updated_at == existing.updated_at

    def test_creates_oauth_only_student(self, user_store) -> None:
        user = resolve_oauth_user(user_store, _profile(email="New@X.com"))
        assert user.id is not None
        assert user.email == "new@x.com"
        assert user.role == "student"
        assert user.password_hash is None
        assert user.oauth_provider == GOOGLE
        assert user.oauth_id == "g-123"
        assert user.name == "Ann Google"

    def test_create_failure(self, user_store, monkeypatch) -> None:
        def boom(user):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(user_store, "insert", boom)
        with pytest.raises(UserCreationFailed):
            resolve_oauth_user(user_store, _profile())


class TestProfileHelpers:
    def test_profile_from_google_token(self) -> None:
        token = {
            "userinfo": {
                "sub": "1234",
                "email": "a@x.com",
                "email_verified": True,
                "name": "Ann A",
                "given_name": "Ann",
                "family_name": "A",
                "picture": "https://img.example/a.png",
            }
        }
        profile = profile_from_google_token(token)
        assert profile.provider == GOOGLE
        assert profile.subject == "1234"
        assert profile.email == "a@x.com"
        assert profile.photo == "https://img.example/a.png"

    def test_unverified_email_is_dropped(self) -> None:
        token = {"userinfo": {"sub": "1", "email": "victim@x.com", "email_verified": False}}
        assert profile_from_google_token(token).email is None

    @pytest.mark.parametrize("token", [{}, {"userinfo": {}}, {"userinfo": {"email": "a@x.com"}}])
    def test_token_without_subject(self, token) -> None:
        with pytest.raises(Unauthenticated):
            profile_from_google_token(token)

    def test_display_name_fallbacks(self) -> None:
        assert display_name_for(_profile(display_name="  Ann  ")) == "Ann"
        assert display_name_for(_profile(display_name=None, given_name="Ann", family_name="Lee")) == "Ann Lee"
        assert display_name_for(_profile(display_name=None, given_name="Ann")) == "Ann"
        assert display_name_for(_profile(display_name="")) == "Unknown User"


class TestBuildOAuth:
    def test_google_not_registered_without_credentials(self) -> None:
        oauth = build_oauth(Settings(google_client_id="", google_client_secret=""))
        assert oauth.create_client(GOOGLE) is None

    def test_google_registered_with_credentials(self) -> None:
        oauth = build_oauth(Settings(google_client_id="cid", google_client_secret="csecret"))
        assert oauth.create_client(GOOGLE) is not None
