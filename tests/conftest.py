import os

# settings are read at import time, so configure them before importing the app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENCODE_KEY"] = "test-encode-key-with-at-least-32-bytes!"
os.environ["ARBITRATOR_WALLETS"] = ""
os.environ["CARDANO_NETWORK"] = ""

import pytest
from fastapi.testclient import TestClient
from pycardano import Address, Network, PaymentSigningKey, PaymentVerificationKey
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from typing import Generator

from main import app
from app.core.config import settings
from app.db.base import Base
from app.db.session import get_db
from app.services.arbitration import ArbitrationPolicy
from app.services.auth_service import AuthService
from app.services.escrow_lifecycle import EscrowLifecycle
from app.services.escrow_repository import SqlEscrowRepository


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db() -> Generator:
    """Override database dependency for testing"""
    db = TestingSessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@pytest.fixture(autouse=True)
def reset_database():
    """Give every test empty tables"""
    import app.models.auth  # noqa: F401
    import app.models.escrow  # noqa: F401
    import app.models.users  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client() -> TestClient:
    """Create a test client for the FastAPI application"""
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class Wallet:
    """A Cardano testnet wallet able to sign challenge messages"""

    def __init__(self) -> None:
        self.signing_key = PaymentSigningKey.generate()
        self.verification_key = PaymentVerificationKey.from_signing_key(self.signing_key)
        self.address = Address(
            payment_part=self.verification_key.hash(), network=Network.TESTNET
        ).encode()
        self.public_key = self.verification_key.payload.hex()

    def sign(self, message: str) -> str:
        return self.signing_key.sign(message.encode("utf-8")).hex()


@pytest.fixture
def make_wallet():
    return Wallet


@pytest.fixture
def wallet() -> Wallet:
    return Wallet()


def login(client: TestClient, wallet: Wallet) -> dict:
    """Run the challenge / verify flow over HTTP and return the token pair"""
    challenge = client.post("/auth/challenge", json={"walletAddress": wallet.address})
    assert challenge.status_code == 200
    message = challenge.json()["message"]
    response = client.post(
        "/auth/verify",
        json={
            "walletAddress": wallet.address,
            "signature": wallet.sign(message),
            "publicKey": wallet.public_key,
        },
    )
    assert response.status_code == 200
    return response.json()


def login_user(client: TestClient, wallet: Wallet) -> tuple[dict, str]:
    """Log in and return (Authorization headers, user id)"""
    tokens = login(client, wallet)
    headers = {"Authorization": f"Bearer {tokens['accessToken']}"}
    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    return headers, me.json()["id"]


def sign_in(db_session, wallet: Wallet):
    """Service-level login, returns (user, token pair)"""
    service = AuthService(db_session)
    challenge = service.request_challenge(wallet.address)
    tokens = service.verify(wallet.address, wallet.sign(challenge.message), wallet.public_key)
    return service.me(tokens.access_token), tokens


@pytest.fixture
def arbitrator_wallets(monkeypatch):
    """Configure ARBITRATOR_WALLETS for the duration of a test"""

    def configure(*wallets: Wallet) -> None:
        monkeypatch.setattr(settings, "ARBITRATOR_WALLETS", ",".join(w.address for w in wallets))

    return configure


@pytest.fixture
def lifecycle(db_session) -> EscrowLifecycle:
    return EscrowLifecycle(SqlEscrowRepository(db_session), ArbitrationPolicy(db_session))
