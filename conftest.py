"""
Fixtures compartidas: base de datos SQLite en memoria, datos semilla y
cliente HTTP con la sesión y la autenticación sustituidas.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from facturacion.main import app
from facturacion.database.database import Base, get_db
from facturacion.modules.auth.dependencies import AuthDependencies
from facturacion.modules.auth.models import User, UserRole
from facturacion.modules.auth.schemas import AuthContext, UserRole as AuthUserRole
from facturacion.modules.contracts.models import Contract, ContractRole, AuthorizedWorker
from facturacion.modules.products.models import Product


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# ===== SEED DATA =====

@pytest.fixture
def sample_user(db_session):
    user = User(
        full_name="Ana Pérez",
        username="aperez",
        identity_card="85010112345",
        role=UserRole.ADMINISTRATOR,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def make_contract(db_session):
    counter = {"n": 0}

    def _make(role: ContractRole = ContractRole.CLIENT, counterpart: str = "Empresa de Prueba") -> Contract:
        counter["n"] += 1
        contract = Contract(code=f"CT-{counter['n']:03d}", counterpart=counterpart, role=role)
        db_session.add(contract)
        db_session.commit()
        db_session.refresh(contract)
        return contract

    return _make


@pytest.fixture
def client_contract(make_contract):
    return make_contract(ContractRole.CLIENT, "Mercado Central")


@pytest.fixture
def supplier_contract(make_contract):
    return make_contract(ContractRole.SUPPLIER, "Distribuidora del Este")


@pytest.fixture
def authorized_worker(db_session, client_contract):
    worker = AuthorizedWorker(contract_id=client_contract.id, full_name="Luis Gómez", identity_card="90020254321")
    db_session.add(worker)
    db_session.commit()
    db_session.refresh(worker)
    return worker


@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(on_hand="10", price="10.00", cost="6.00", name=None) -> Product:
        counter["n"] += 1
        product = Product(
            code=f"P-{counter['n']:03d}",
            name=name or f"Producto {counter['n']}",
            unit_of_measure="kg",
            price=Decimal(price),
            cost=Decimal(cost),
            on_hand_quantity=Decimal(on_hand),
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def product(make_product):
    return make_product(on_hand="10", name="Carne de res")


# ===== HTTP CLIENT =====

@pytest.fixture
def client(db_session, sample_user):
    def override_get_db():
        yield db_session

    def override_auth_context():
        return AuthContext(user_id=sample_user.id, user_role=AuthUserRole.ADMINISTRATOR)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[AuthDependencies.get_auth_context] = override_auth_context
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
