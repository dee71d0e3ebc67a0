import pytest

from app.core.errors import (
    ChallengeNotFound,
    SignatureInvalid,
    TokenInvalid,
    TokenRevoked,
    Unauthorized,
    ValidationError,
)
from app.models.auth import RefreshToken
from app.models.users import User
from app.services.auth_service import AuthService
from tests.conftest import sign_in


class TestAuthService:
    def test_request_challenge_rejects_invalid_address(self, db_session):
        with pytest.raises(ValidationError):
            AuthService(db_session).request_challenge("invalid-address")

    def test_first_login_creates_user(self, db_session, wallet):
        user, tokens = sign_in(db_session, wallet)

        assert user.wallet_address == wallet.address
        assert user.is_active
        assert tokens.token_type == "bearer"
        assert tokens.expires_in == 900
        assert db_session.query(User).count() == 1

    def test_second_login_reuses_user(self, db_session, wallet):
        first, _ = sign_in(db_session, wallet)
        second, _ = sign_in(db_session, wallet)

        assert first.id == second.id
        assert db_session.query(User).count() == 1
        assert db_session.query(RefreshToken).count() == 2

    def test_each_wallet_gets_own_user(self, db_session, make_wallet):
        first, _ = sign_in(db_session, make_wallet())
        second, _ = sign_in(db_session, make_wallet())
        assert first.id != second.id

    def test_verify_without_challenge(self, db_session, wallet):
        with pytest.raises(ChallengeNotFound):
            AuthService(db_session).verify(wallet.address, wallet.sign("anything"), wallet.public_key)
        assert db_session.query(User).count() == 0

    def test_failed_verification_creates_nothing(self, db_session, wallet):
        service = AuthService(db_session)
        service.request_challenge(wallet.address)

        with pytest.raises(SignatureInvalid):
            service.verify(wallet.address, "invalid-signature", wallet.public_key)
        assert db_session.query(User).count() == 0
        assert db_session.query(RefreshToken).count() == 0

    def test_signature_from_another_wallet(self, db_session, wallet, make_wallet):
        service = AuthService(db_session)
        challenge = service.request_challenge(wallet.address)
        other = make_wallet()

        with pytest.raises(SignatureInvalid):
            service.verify(wallet.address, other.sign(challenge.message), other.public_key)

    def test_verify_rejects_invalid_address(self, db_session, wallet):
        with pytest.raises(Unauthorized):
            AuthService(db_session).verify("invalid-address", "00", wallet.public_key)

    def test_inactive_user_cannot_log_in(self, db_session, wallet):
        user, _ = sign_in(db_session, wallet)
        user.is_active = False
        db_session.commit()

        service = AuthService(db_session)
        challenge = service.request_challenge(wallet.address)
        with pytest.raises(Unauthorized):
            service.verify(wallet.address, wallet.sign(challenge.message), wallet.public_key)

    def test_me_rejects_inactive_user(self, db_session, wallet):
        user, tokens = sign_in(db_session, wallet)
        user.is_active = False
        db_session.commit()

        with pytest.raises(Unauthorized):
            AuthService(db_session).me(tokens.access_token)

    def test_me_rejects_garbage_token(self, db_session):
        with pytest.raises(TokenInvalid):
            AuthService(db_session).me("invalid-token")

    def test_refresh_then_logout(self, db_session, wallet):
        user, tokens = sign_in(db_session, wallet)
        service = AuthService(db_session)

        rotated = service.refresh(tokens.refresh_token)
        assert service.me(rotated.access_token).id == user.id

        service.logout(rotated.refresh_token)
        with pytest.raises(TokenRevoked):
            service.refresh(rotated.refresh_token)
