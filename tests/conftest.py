import os
import tempfile
from collections.abc import Callable, Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production-use-0123456789")

import storefront.models  # noqa: F401
from storefront.core.security import create_access_token, hash_password
from storefront.db.base_class import Base
from storefront.db.session import get_db
from storefront.main import app
from storefront.models.product import Product
from storefront.models.user import User, UserRole


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make_user(username: str, role: UserRole = UserRole.CUSTOMER) -> User:
        user = User(
            username=username,
            email=f"{username.lower()}@example.com",
            password_hash=hash_password("StrongPass1"),
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def customer(make_user) -> User:
    return make_user("alice")


@pytest.fixture()
def admin_user(make_user) -> User:
    return make_user("admin", role=UserRole.ADMIN)


@pytest.fixture()
def make_product(db_session: Session) -> Callable[..., Product]:
    def _make_product(product_id: str, price: str = "10.00", in_stock: bool = True, title: str = None) -> Product:
        product = Product(
            id=product_id,
            title=title or f"Product {product_id}",
            price=Decimal(price),
            category="beans",
            in_stock=in_stock,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make_product


def auth_headers(user: User) -> dict:
    token = create_access_token(
        data={
            "sub": str(user.id),
            "role": user.role.value,
            "session_version": user.session_version,
        }
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_for() -> Callable[[User], dict]:
    return auth_headers


CUSTOMER_INFO = {
    "name": "Alice Doe",
    "email": "alice@example.com",
    "address": "1 Bean Street, Portland",
}


@pytest.fixture()
def customer_info() -> dict:
    return dict(CUSTOMER_INFO)


VISA_CARD = {
    "card_number": "4111 1111 1111 1111",
    "expiry": "12/29",
    "cvv": "123",
    "cardholder_name": "Alice Doe",
}


@pytest.fixture()
def card() -> dict:
    return dict(VISA_CARD)
