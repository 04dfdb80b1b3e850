import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from dealhub.db import migrate
from dealhub.db.migrate import parse_id_list, run_migrations
from dealhub.db.session import create_engine_for
from dealhub.store.deals import DealStore


@pytest.fixture()
def legacy_engine():
    engine = create_engine_for("sqlite://", poolclass=StaticPool)
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                CREATE TABLE deals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    software_name TEXT NOT NULL,
                    category_id INTEGER,
                    categories TEXT,
                    logo_url TEXT,
                    website_url TEXT,
                    referral_link TEXT,
                    discount TEXT NOT NULL,
                    coupon_code TEXT,
                    time_limit TEXT,
                    description TEXT,
                    is_active BOOLEAN DEFAULT 1,
                    clicks INTEGER DEFAULT 0,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
        )
        conn.execute(
            text(
                """
                INSERT INTO deals (software_name, category_id, categories, discount)
                VALUES ('Legacy One', 2, '3, 2,abc,0,2', '10% off'),
                       ('Legacy Two', 1, '', '5% off'),
                       ('Legacy Three', NULL, '1,2,3,4,5,6', '1% off')
                """
            )
        )
    yield engine
    engine.dispose()


def _links(engine, deal_id):
    with engine.connect() as conn:
        return [
            row[0]
            for row in conn.execute(
                text("SELECT category_id FROM deal_categories WHERE deal_id = :id ORDER BY position"),
                {"id": deal_id},
            )
        ]


def test_legacy_table_gains_new_columns(legacy_engine):
    run_migrations(legacy_engine)
    columns = {col["name"] for col in inspect(legacy_engine).get_columns("deals")}
    assert {"likes", "about", "software_name_slug"} <= columns
    assert DealStore(legacy_engine).get(1)["likes"] == 0


def test_legacy_categories_copied_into_links(legacy_engine):
    run_migrations(legacy_engine)
    assert _links(legacy_engine, 1) == [3]
    assert _links(legacy_engine, 2) == []
    assert _links(legacy_engine, 3) == [1, 2, 3, 4]


def test_migrations_are_idempotent(legacy_engine):
    run_migrations(legacy_engine)
    run_migrations(legacy_engine)
    assert _links(legacy_engine, 1) == [3]
    with legacy_engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM deal_categories")).scalar() == 5


def test_rerun_does_not_restore_removed_links(legacy_engine):
    run_migrations(legacy_engine)
    store = DealStore(legacy_engine)
    store.set_categories(1, 2, [5, 6, 7, 8])

    run_migrations(legacy_engine)

    assert _links(legacy_engine, 1) == [5, 6, 7, 8]
    with legacy_engine.connect() as conn:
        legacy = conn.execute(text("SELECT categories FROM deals WHERE id = 1")).scalar()
    assert legacy is None


def test_legacy_rows_get_slugs(legacy_engine):
    run_migrations(legacy_engine)
    with legacy_engine.connect() as conn:
        slugs = conn.execute(text("SELECT software_name_slug FROM deals ORDER BY id")).scalars().all()
    assert slugs == ["legacy-one", "legacy-two", "legacy-three"]
    assert DealStore(legacy_engine).find_by_slug("legacy-two")["id"] == 2


def test_fresh_schema_has_all_tables(engine):
    tables = set(inspect(engine).get_table_names())
    assert {"categories", "deals", "deal_categories", "related_deal_likes", "analytics"} <= tables


@pytest.mark.parametrize(
    "raw, expected",
    [(None, []), ("", []), ("1,2,3", [1, 2, 3]), (" 4 , x, 4, -1, 0, 7", [4, 7])],
)
def test_parse_id_list(raw, expected):
    assert parse_id_list(raw) == expected


def test_main_exits_on_database_error(monkeypatch):
    def boom(engine):
        raise OperationalError("CREATE TABLE", {}, Exception("disk I/O error"))

    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setattr(migrate, "run_migrations", boom)
    with pytest.raises(SystemExit) as excinfo:
        migrate.main()
    assert excinfo.value.code == 2
