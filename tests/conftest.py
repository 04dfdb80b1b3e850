import pytest
from sqlalchemy.pool import StaticPool

from dealhub.db.migrate import run_migrations
from dealhub.db.session import create_engine_for
from dealhub.store.categories import CategoryStore
from dealhub.store.deals import DealStore
from dealhub.store.likes import LikeLedger


@pytest.fixture()
def engine():
    engine = create_engine_for("sqlite://", poolclass=StaticPool)
    run_migrations(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def deals(engine):
    return DealStore(engine)


@pytest.fixture()
def categories(engine):
    return CategoryStore(engine)


@pytest.fixture()
def ledger(engine):
    return LikeLedger(engine)


@pytest.fixture()
def make_deal(deals):
    def _make(name, discount="10% off", **fields):
        return deals.create({"software_name": name, "discount": discount, **fields})

    return _make


@pytest.fixture()
def seeded_engine(engine, categories, make_deal):
    productivity = categories.create("Productivity", "Tools to enhance productivity")
    design = categories.create("Design", "Graphic design and creative software")
    make_deal("Alpha", "20% off", category_id=productivity)
    make_deal("Beta", "30% off", category_id=design, categories=[productivity])
    make_deal("Gamma", "40% off", category_id=productivity)
    make_deal("Delta", "50% off")
    return engine
