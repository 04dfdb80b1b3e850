"""Periodic deal refresh: new software first, then stale existing deals."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import pathlib
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx
import pendulum
from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from dealhub.db.session import create_engine_from_env
from dealhub.errors import DealHubError
from dealhub.ingest.extractor import GeminiExtractor
from dealhub.ingest.models import IngestPayload, IngestResult
from dealhub.ingest.pipeline import DealIngestor
from dealhub.ingest.search import WebSearchClient
from dealhub.store.deals import DealStore
from dealhub.utils.dates import months_between, now_in_tz, parse_timestamp
from dealhub.utils.retry import ServiceOverloadedError

logger = logging.getLogger(__name__)

DEFAULT_KEYWORDS = ["coupon code", "discount", "promo code"]
_ENTRY_RE = re.compile(r"^(.+?)\s*\((\d+)\)\s*$")


@dataclass(slots=True)
class SchedulerConfig:
    search_interval_months: int = 3
    min_delay_minutes: int = 30
    max_delay_minutes: int = 180
    new_min_delay_minutes: int = 15
    new_max_delay_minutes: int = 60
    new_software_file: pathlib.Path = pathlib.Path("new-software.txt")
    search_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    schedule_dir: pathlib.Path = pathlib.Path(".cache/schedule")

    def __post_init__(self) -> None:
        if self.search_interval_months < 1:
            raise ValueError("search_interval_months must be at least 1")
        if self.min_delay_minutes < 1:
            raise ValueError("min_delay_minutes must be at least 1")
        if self.max_delay_minutes < self.min_delay_minutes:
            raise ValueError("max_delay_minutes must not be lower than min_delay_minutes")
        if self.new_min_delay_minutes < 1:
            raise ValueError("new_min_delay_minutes must be at least 1")
        if self.new_max_delay_minutes < self.new_min_delay_minutes:
            raise ValueError("new_max_delay_minutes must not be lower than new_min_delay_minutes")
        if not self.search_keywords:
            self.search_keywords = list(DEFAULT_KEYWORDS)

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        keywords = os.environ.get("SEARCH_KEYWORDS")
        return cls(
            search_interval_months=int(os.environ.get("SEARCH_INTERVAL_MONTHS", 3)),
            min_delay_minutes=int(os.environ.get("MIN_DELAY_MINUTES", 30)),
            max_delay_minutes=int(os.environ.get("MAX_DELAY_MINUTES", 180)),
            new_min_delay_minutes=int(os.environ.get("NEW_SOFTWARE_MIN_DELAY_MINUTES", 15)),
            new_max_delay_minutes=int(os.environ.get("NEW_SOFTWARE_MAX_DELAY_MINUTES", 60)),
            new_software_file=pathlib.Path(os.environ.get("NEW_SOFTWARE_FILE", "new-software.txt")),
            search_keywords=[k.strip() for k in keywords.split(",") if k.strip()] if keywords else list(DEFAULT_KEYWORDS),
            schedule_dir=pathlib.Path(os.environ.get("SCHEDULE_DIR", ".cache/schedule")),
        )


@dataclass(slots=True)
class SoftwareEntry:
    software_name: str
    search_query: str
    keyword_index: int
    original_entry: str


class ScheduleBook:
    """Last-search timestamps keyed by software name, persisted as JSON.

    ``mark`` re-reads the file before writing so overlapping runs keep each
    other's entries.
    """

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path
        self._data = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("Invalid schedule file %s; starting fresh", self.path)
            return {}

    def last_search(self, name: str) -> str | None:
        return self._data.get(name)

    def mark(self, name: str, when: pendulum.DateTime | None = None) -> None:
        self._data.update(self._load())
        self._data[name] = (when or now_in_tz()).to_iso8601_string()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2))
        os.replace(tmp_path, self.path)


def parse_software_entry(entry: str) -> tuple[str, int]:
    """Split ``"Notion (2)"`` into the name and a 0-based keyword index."""
    match = _ENTRY_RE.match(entry)
    if match:
        return match.group(1).strip(), int(match.group(2)) - 1
    return entry.strip(), 0


def build_search_query(software_name: str, keyword_index: int, keywords: list[str]) -> str:
    if 0 <= keyword_index < len(keywords):
        keyword = keywords[keyword_index]
    else:
        keyword = keywords[0] if keywords else "coupon code"
    return f"{software_name} {keyword}"


def load_new_software(path: pathlib.Path, keywords: list[str]) -> list[SoftwareEntry]:
    if not path.exists():
        return []
    entries: list[SoftwareEntry] = []
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line:
            continue
        name, index = parse_software_entry(line)
        entries.append(
            SoftwareEntry(
                software_name=name,
                search_query=build_search_query(name, index, keywords),
                keyword_index=index,
                original_entry=line,
            )
        )
    return entries


def needs_search(last_search: str | None, interval_months: int, now: pendulum.DateTime | None = None) -> bool:
    if not last_search:
        return True
    return months_between(parse_timestamp(last_search), now or now_in_tz()) >= interval_months


def random_delay_seconds(min_minutes: int, max_minutes: int) -> float:
    return random.uniform(min_minutes * 60, max_minutes * 60)


class RefreshRunner:
    def __init__(
        self,
        engine: Engine,
        config: SchedulerConfig,
        search: WebSearchClient,
        extractor: GeminiExtractor,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.config = config
        self.search = search
        self.extractor = extractor
        self.ingestor = DealIngestor(engine)
        self.sleep = sleep
        self.new_book = ScheduleBook(config.schedule_dir / "new-software-schedule.json")
        self.book = ScheduleBook(config.schedule_dir / "search-schedule.json")

    async def refresh(self, software_name: str, query: str) -> IngestResult | None:
        document = await self.search.collect(query)
        data = await self.extractor.analyze(document, software_name)
        if data is None:
            logger.warning("No extracted data for %s; leaving the deal untouched", software_name)
            return None
        payload = IngestPayload.from_analysis(data)
        return await asyncio.get_running_loop().run_in_executor(
            None, self.ingestor.apply, software_name, payload
        )

    async def run_cycle(self) -> list[IngestResult]:
        results: list[IngestResult] = []
        new_entries = [
            entry
            for entry in load_new_software(self.config.new_software_file, self.config.search_keywords)
            if self.new_book.last_search(entry.original_entry) is None
        ]
        logger.info("%s new software entries to process", len(new_entries))
        for idx, entry in enumerate(new_entries):
            result = await self._refresh_safely(entry.software_name, entry.search_query)
            self.new_book.mark(entry.original_entry)
            if result:
                results.append(result)
            if idx < len(new_entries) - 1:
                await self.sleep(
                    random_delay_seconds(self.config.new_min_delay_minutes, self.config.new_max_delay_minutes)
                )

        names = [deal["software_name"] for deal in DealStore(self.engine).list_all()]
        random.shuffle(names)
        stale = [
            name
            for name in names
            if needs_search(self.book.last_search(name), self.config.search_interval_months)
        ]
        logger.info("%s existing deals due for refresh", len(stale))
        for idx, name in enumerate(stale):
            if new_entries or idx:
                await self.sleep(random_delay_seconds(self.config.min_delay_minutes, self.config.max_delay_minutes))
            result = await self._refresh_safely(name, build_search_query(name, 0, self.config.search_keywords))
            self.book.mark(name)
            if result:
                results.append(result)
        return results

    async def _refresh_safely(self, software_name: str, query: str) -> IngestResult | None:
        try:
            return await self.refresh(software_name, query)
        except (DealHubError, httpx.HTTPError, ServiceOverloadedError, ValueError) as exc:
            # ValueError covers replies that are not JSON.
            logger.warning("Refresh failed for %s: %s", software_name, exc)
            return None


async def run_refresh() -> list[IngestResult]:
    load_dotenv()
    engine = create_engine_from_env()
    config = SchedulerConfig.from_env()
    search = WebSearchClient()
    extractor = GeminiExtractor()
    try:
        return await RefreshRunner(engine, config, search, extractor).run_cycle()
    finally:
        await search.close()
        await extractor.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_refresh())
