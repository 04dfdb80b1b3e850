import httpx
import pendulum
import pytest
import respx

from dealhub.errors import NotFoundError
from dealhub.ingest.extractor import GeminiExtractor
from dealhub.jobs.scheduler import (
    DEFAULT_KEYWORDS,
    RefreshRunner,
    ScheduleBook,
    SchedulerConfig,
    build_search_query,
    load_new_software,
    needs_search,
    parse_software_entry,
)
from dealhub.utils.retry import ServiceOverloadedError

NOW = pendulum.datetime(2024, 6, 1, tz="UTC")
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"


class FakeSearch:
    def __init__(self):
        self.queries = []

    async def collect(self, query):
        self.queries.append(query)
        return f"SEARCH QUERY: {query}"


class FakeExtractor:
    def __init__(self, reply=None, error=None):
        self.reply = reply if reply is not None else {"best_discount": "15", "categories": ["Productivity"]}
        self.error = error

    async def analyze(self, document, software_name):
        if self.error:
            raise self.error
        return dict(self.reply, software_name=software_name)


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def runner_factory(engine, tmp_path, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    def _make(new_software="", extractor=None):
        software_file = tmp_path / "new-software.txt"
        software_file.write_text(new_software)
        config = SchedulerConfig(new_software_file=software_file, schedule_dir=tmp_path / "schedule")
        return RefreshRunner(engine, config, FakeSearch(), extractor or FakeExtractor(), sleep=fake_sleep)

    return _make


@pytest.mark.parametrize(
    "entry, expected",
    [("Notion (2)", ("Notion", 1)), ("Canva Pro", ("Canva Pro", 0)), ("  Figma (1) ", ("Figma", 0))],
)
def test_parse_software_entry(entry, expected):
    assert parse_software_entry(entry) == expected


def test_build_search_query_falls_back_to_first_keyword():
    assert build_search_query("Notion", 1, DEFAULT_KEYWORDS) == "Notion discount"
    assert build_search_query("Notion", 9, DEFAULT_KEYWORDS) == "Notion coupon code"
    assert build_search_query("Notion", 0, []) == "Notion coupon code"


def test_load_new_software_skips_blank_lines(tmp_path):
    path = tmp_path / "new.txt"
    path.write_text("TaskMagic (3)\n\n  \nNotion\n")
    entries = load_new_software(path, DEFAULT_KEYWORDS)
    assert [(e.software_name, e.search_query, e.original_entry) for e in entries] == [
        ("TaskMagic", "TaskMagic promo code", "TaskMagic (3)"),
        ("Notion", "Notion coupon code", "Notion"),
    ]
    assert load_new_software(tmp_path / "missing.txt", DEFAULT_KEYWORDS) == []


def test_needs_search():
    assert needs_search(None, 3, NOW)
    assert needs_search(NOW.subtract(days=91).to_iso8601_string(), 3, NOW)
    assert not needs_search(NOW.subtract(days=30).to_iso8601_string(), 3, NOW)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"search_interval_months": 0},
        {"min_delay_minutes": 0},
        {"min_delay_minutes": 60, "max_delay_minutes": 30},
        {"new_min_delay_minutes": 20, "new_max_delay_minutes": 10},
    ],
)
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        SchedulerConfig(**kwargs)


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SEARCH_INTERVAL_MONTHS", "6")
    monkeypatch.setenv("SEARCH_KEYWORDS", "deal, , voucher")
    monkeypatch.setenv("SCHEDULE_DIR", str(tmp_path))
    config = SchedulerConfig.from_env()
    assert config.search_interval_months == 6
    assert config.search_keywords == ["deal", "voucher"]
    assert config.schedule_dir == tmp_path


def test_schedule_book_persists(tmp_path):
    path = tmp_path / "book.json"
    book = ScheduleBook(path)
    assert book.last_search("Notion") is None
    book.mark("Notion", NOW)
    assert ScheduleBook(path).last_search("Notion") == NOW.to_iso8601_string()

    path.write_text("{broken")
    assert ScheduleBook(path).last_search("Notion") is None


@pytest.mark.asyncio
async def test_run_cycle_processes_new_then_existing(runner_factory, deals, make_deal, sleeps):
    make_deal("Notion", "10% off")
    runner = runner_factory("TaskMagic (2)\n\nNotion\n")

    results = await runner.run_cycle()

    assert len(results) == 4
    assert runner.search.queries[:2] == ["TaskMagic discount", "Notion coupon code"]
    assert [r.created for r in results[:2]] == [True, False]
    assert deals.count() == 2
    assert len(sleeps) == 3
    assert 15 * 60 <= sleeps[0] <= 60 * 60
    assert all(30 * 60 <= s <= 180 * 60 for s in sleeps[1:])

    sleeps.clear()
    assert await runner.run_cycle() == []
    assert sleeps == []


@pytest.mark.asyncio
async def test_run_cycle_without_new_software_skips_first_delay(runner_factory, make_deal, sleeps):
    make_deal("Notion", "10% off")
    make_deal("Canva Pro", "5% off")
    runner = runner_factory()

    results = await runner.run_cycle()

    assert {r.software_name for r in results} == {"Notion", "Canva Pro"}
    assert len(sleeps) == 1


@pytest.mark.asyncio
async def test_failed_refresh_is_recorded_and_skipped(runner_factory, deals, make_deal):
    deal_id = make_deal("Notion", "10% off")
    runner = runner_factory(extractor=FakeExtractor(error=NotFoundError("gone")))

    assert await runner.run_cycle() == []
    assert runner.book.last_search("Notion") is not None
    assert deals.get(deal_id)["discount"] == "10% off"


@pytest.mark.asyncio
async def test_missing_extraction_leaves_deal_untouched(runner_factory, deals, make_deal):
    deal_id = make_deal("Notion", "10% off")
    runner = runner_factory()
    runner.extractor.analyze = _no_data

    assert await runner.refresh("Notion", "Notion coupon code") is None
    assert deals.get(deal_id)["discount"] == "10% off"


async def _no_data(document, software_name):
    return None


def test_celery_beat_runs_refresh_daily():
    from dealhub.jobs.celery_app import celery_app

    entry = celery_app.conf.beat_schedule["deal-refresh"]
    assert entry["task"] == "dealhub.jobs.scheduler.run_refresh"
    assert entry["task"] in celery_app.tasks


@pytest.mark.asyncio
async def test_overloaded_model_does_not_stop_the_cycle(runner_factory, make_deal):
    make_deal("Notion", "10% off")
    make_deal("Canva Pro", "5% off")
    runner = runner_factory(extractor=FakeExtractor(error=ServiceOverloadedError("Model overloaded (503)")))

    assert await runner.run_cycle() == []
    assert runner.book.last_search("Notion") is not None
    assert runner.book.last_search("Canva Pro") is not None


@pytest.mark.asyncio
async def test_non_json_model_reply_does_not_stop_the_cycle(runner_factory, deals, make_deal):
    deal_id = make_deal("Notion", "10% off")
    make_deal("Canva Pro", "5% off")
    async with respx.mock() as router:
        router.post(GEMINI_URL).mock(return_value=httpx.Response(200, text="<html>Service error</html>"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.async_handler)) as session:
            extractor = GeminiExtractor("test-key", model="gemini-1.5-flash", session=session)
            runner = runner_factory(extractor=extractor)
            assert await runner.run_cycle() == []

    assert runner.book.last_search("Notion") is not None
    assert runner.book.last_search("Canva Pro") is not None
    assert deals.get(deal_id)["discount"] == "10% off"


def test_schedule_books_merge_overlapping_runs(tmp_path):
    path = tmp_path / "search-schedule.json"
    first = ScheduleBook(path)
    second = ScheduleBook(path)

    first.mark("Notion", NOW)
    second.mark("Canva Pro", NOW)

    merged = ScheduleBook(path)
    assert merged.last_search("Notion") == NOW.to_iso8601_string()
    assert merged.last_search("Canva Pro") == NOW.to_iso8601_string()
