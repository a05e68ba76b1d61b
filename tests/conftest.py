from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from raas.api.app import create_app
from raas.business.auth import AuthUser, UserRole
from raas.business.billing_models import Allocation, Base, Distributor, EnergyReading, Installation
from raas.business.ledger import InstallationType
from raas.business.periods import Period


def _enable_foreign_keys(dbapi_connection, connection_record):
    dbapi_connection.execute("PRAGMA foreign_keys=ON")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture
def admin():
    return AuthUser(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def customer():
    return AuthUser(user_id="customer-1", role=UserRole.USER)


@pytest.fixture
def distributor(session):
    d = Distributor(name="CEMIG", kwh_rate=Decimal("0.976"), default_discount=Decimal("0.20"))
    session.add(d)
    session.flush()
    return d


@pytest.fixture
def make_installation(session):
    def make(number, installation_type=InstallationType.CONSUMER, user_id=None, distributor=None):
        inst = Installation(
            installation_number=number,
            installation_type=installation_type,
            user_id=user_id,
            distributor_id=distributor.id if distributor is not None else None,
        )
        session.add(inst)
        session.flush()
        return inst
    return make


@pytest.fixture
def add_reading(session):
    def add(installation, period, consumption, generation=0):
        p = Period.parse(period)
        session.add(EnergyReading(
            installation_id=installation.id,
            period=str(p),
            period_key=p.key,
            consumption=Decimal(str(consumption)),
            generation=Decimal(str(generation)),
        ))
        session.flush()
    return add


@pytest.fixture
def pool(session, distributor, make_installation):
    """One roof sharing 55% / 20% of its surplus with two consumers."""
    gen = make_installation("3015031311", InstallationType.GENERATOR, distributor=distributor)
    c1 = make_installation("3004402254", user_id="customer-1", distributor=distributor)
    c2 = make_installation("3011883117", user_id="customer-2", distributor=distributor)
    session.add_all([
        Allocation(generator_id=gen.id, consumer_id=c1.id, quota=Decimal("55")),
        Allocation(generator_id=gen.id, consumer_id=c2.id, quota=Decimal("20")),
    ])
    session.flush()
    return gen, c1, c2


@pytest.fixture
def client(session_factory):
    app = create_app(session_factory=session_factory)
    with TestClient(app) as c:
        yield c

