from unittest.mock import patch

import jwt
import pytest

from app.core.config import settings
from app.core.errors import TokenExpired, TokenInvalid, TokenRevoked, Unauthorized
from app.models.auth import RefreshToken
from app.services.token_issuer import TokenIssuer, hash_token

USER_ID = "550e8400-e29b-41d4-a716-446655440000"


def _user(db_session):
    from app.models.users import User

    user = User(id=USER_ID, wallet_address="addr_test1_fixture")
    db_session.add(user)
    db_session.commit()
    return user


class TestAccessTokens:
    def test_round_trip(self, db_session):
        issuer = TokenIssuer(db_session)
        assert issuer.validate_access_token(issuer.issue_access_token(USER_ID)) == USER_ID

    def test_expired(self, db_session):
        token = jwt.encode(
            {"sub": USER_ID, "type": "access", "iat": 1, "exp": 2},
            settings.ENCODE_KEY,
            algorithm=settings.ENCODE_ALGORITHM,
        )
        with pytest.raises(TokenExpired):
            TokenIssuer(db_session).validate_access_token(token)

    def test_wrong_key(self, db_session):
        token = jwt.encode({"sub": USER_ID, "type": "access"}, "another-key-with-at-least-32-bytes", algorithm="HS256")
        with pytest.raises(TokenInvalid):
            TokenIssuer(db_session).validate_access_token(token)

    def test_wrong_token_type(self, db_session):
        token = jwt.encode({"sub": USER_ID, "type": "refresh"}, settings.ENCODE_KEY, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            TokenIssuer(db_session).validate_access_token(token)

    @pytest.mark.parametrize("token", ["", "invalid-token"])
    def test_garbage(self, db_session, token):
        with pytest.raises(TokenInvalid):
            TokenIssuer(db_session).validate_access_token(token)


class TestRefreshTokens:
    def test_only_hash_is_stored(self, db_session):
        _user(db_session)
        issuer = TokenIssuer(db_session)
        token = issuer.issue_refresh_token(USER_ID)
        db_session.commit()

        row = db_session.query(RefreshToken).one()
        assert row.token_hash == hash_token(token)
        assert token not in (row.token_hash, row.id)

    def test_rotation_revokes_old_token(self, db_session):
        _user(db_session)
        issuer = TokenIssuer(db_session)
        pair = issuer.issue_pair(USER_ID)
        db_session.commit()

        rotated = issuer.rotate_refresh(pair.refresh_token)

        assert rotated.refresh_token != pair.refresh_token
        assert issuer.validate_access_token(rotated.access_token) == USER_ID
        with pytest.raises(TokenRevoked):
            issuer.rotate_refresh(pair.refresh_token)

    def test_reuse_of_rotated_token_revokes_all_sessions(self, db_session):
        _user(db_session)
        issuer = TokenIssuer(db_session)
        stolen = issuer.issue_pair(USER_ID).refresh_token
        other_session = issuer.issue_pair(USER_ID).refresh_token
        db_session.commit()

        current = issuer.rotate_refresh(stolen).refresh_token
        with pytest.raises(TokenRevoked):
            issuer.rotate_refresh(stolen)

        for token in (current, other_session):
            with pytest.raises(TokenRevoked):
                issuer.rotate_refresh(token)

    def test_inactive_user_cannot_rotate(self, db_session):
        user = _user(db_session)
        issuer = TokenIssuer(db_session)
        token = issuer.issue_refresh_token(USER_ID)
        user.is_active = False
        db_session.commit()

        with pytest.raises(Unauthorized):
            issuer.rotate_refresh(token)
        assert db_session.query(RefreshToken).count() == 1

    def test_unknown_token(self, db_session):
        with pytest.raises(TokenInvalid):
            TokenIssuer(db_session).rotate_refresh("unknown")

    def test_expired_refresh_token(self, db_session):
        _user(db_session)
        issuer = TokenIssuer(db_session)
        token = issuer.issue_refresh_token(USER_ID)
        db_session.commit()

        row = db_session.query(RefreshToken).one()
        with patch("app.services.token_issuer._now", return_value=row.expires_at):
            with pytest.raises(TokenExpired):
                issuer.rotate_refresh(token)

    def test_logout_is_idempotent(self, db_session):
        _user(db_session)
        issuer = TokenIssuer(db_session)
        token = issuer.issue_refresh_token(USER_ID)
        db_session.commit()

        issuer.revoke(token)
        issuer.revoke(token)

        with pytest.raises(TokenRevoked):
            issuer.rotate_refresh(token)

    def test_logout_keeps_other_sessions(self, db_session):
        _user(db_session)
        issuer = TokenIssuer(db_session)
        logged_out = issuer.issue_refresh_token(USER_ID)
        other = issuer.issue_refresh_token(USER_ID)
        db_session.commit()

        issuer.revoke(logged_out)
        with pytest.raises(TokenRevoked):
            issuer.rotate_refresh(logged_out)

        assert issuer.rotate_refresh(other).refresh_token
