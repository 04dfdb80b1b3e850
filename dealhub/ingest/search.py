"""Web search and page collection for the refresh pipeline."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

from dealhub.utils.rate_limit import RateLimiter
from dealhub.utils.retry import retry_async

logger = logging.getLogger(__name__)

SEARCH_URL = os.environ.get("SEARCH_URL", "https://html.duckduckgo.com/html/")
USER_AGENT = "DealHubBot/1.0"
TOP_RESULTS = 3
MAX_PAGE_CHARS = 15000
SOCIAL_HOSTS = ("facebook.com", "twitter.com", "x.com", "instagram.com", "linkedin.com", "youtube.com")
_SPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class SearchResult:
    title: str
    url: str
    snippet: str


@dataclass(slots=True)
class RankedPage:
    rank: int
    url: str
    text: str


class WebSearchClient:
    def __init__(
        self,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        search_url: str = SEARCH_URL,
    ) -> None:
        self._session = session or httpx.AsyncClient(
            timeout=30.0, follow_redirects=True, headers={"User-Agent": USER_AGENT}
        )
        self._rate_limiter = rate_limiter or RateLimiter()
        self._robot_cache: dict[str, RobotFileParser] = {}
        self.search_url = search_url

    async def close(self) -> None:
        await self._session.aclose()

    async def search(self, query: str) -> list[SearchResult]:
        logger.info("Searching: %s", query)
        host = urlparse(self.search_url).netloc
        await self._rate_limiter.wait_for_host(host)
        response = await retry_async(self._session.get)(self.search_url, params={"q": query})
        response.raise_for_status()
        return parse_search_results(response.text)

    async def fetch_page(self, url: str) -> str:
        await self._respect_robots(url)
        await self._rate_limiter.wait_for_host(urlparse(url).netloc)
        response = await retry_async(self._session.get)(url)
        response.raise_for_status()
        return page_text(response.text)

    async def collect(self, query: str, *, top: int = TOP_RESULTS) -> str:
        """Search, fetch the top pages and stitch everything into one document."""
        results = await self.search(query)
        pages: list[RankedPage] = []
        for result in results:
            if len(pages) == top:
                break
            try:
                text = await self.fetch_page(result.url)
            except PermissionError as exc:
                logger.warning("Skipping %s: %s", result.url, exc)
                continue
            except httpx.HTTPError as exc:
                logger.warning("Could not fetch %s: %s", result.url, exc)
                continue
            pages.append(RankedPage(rank=len(pages) + 1, url=result.url, text=text))
        return stitch_document(query, results, pages)

    async def _respect_robots(self, url: str) -> None:
        parsed = urlparse(url)
        base = f"{parsed.scheme}://{parsed.netloc}"
        parser = self._robot_cache.get(base)
        if parser is None:
            parser = RobotFileParser()
            try:
                response = await self._session.get(f"{base}/robots.txt")
                response.raise_for_status()
            except httpx.HTTPError:
                parser.parse("User-agent: *\nAllow: /".splitlines())
            else:
                parser.parse(response.text.splitlines())
            self._robot_cache[base] = parser
        if not parser.can_fetch(USER_AGENT, parsed.path or "/"):
            raise PermissionError(f"Blocked by robots.txt: {url}")


def parse_search_results(html: str) -> list[SearchResult]:
    soup = BeautifulSoup(html, "html.parser")
    results: list[SearchResult] = []
    seen: set[str] = set()
    for link in soup.select("a.result__a"):
        url = _unwrap_redirect(link.get("href") or "")
        if not url.startswith("http") or url in seen:
            continue
        if any(urlparse(url).netloc.endswith(host) for host in SOCIAL_HOSTS):
            continue
        seen.add(url)
        container = link.find_parent(class_="result")
        snippet_node = container.select_one(".result__snippet") if container else None
        results.append(
            SearchResult(
                title=_squash(link.get_text(" ")),
                url=url,
                snippet=_squash(snippet_node.get_text(" ")) if snippet_node else "",
            )
        )
    return results


def page_text(html: str, limit: int = MAX_PAGE_CHARS) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "svg", "iframe"]):
        tag.decompose()
    return _squash(soup.get_text(" "))[:limit]


def stitch_document(query: str, results: list[SearchResult], pages: list[RankedPage]) -> str:
    lines = [f"SEARCH QUERY: {query}", "", "=== SEARCH RESULTS ==="]
    for idx, result in enumerate(results, start=1):
        lines.append(f"{idx}. {result.title} - {result.url}")
        if result.snippet:
            lines.append(f"   {result.snippet}")
    for page in pages:
        lines.extend(["", f"=== RANKED #{page.rank} RESULT: {page.url} ===", page.text])
    return "\n".join(lines)


def _unwrap_redirect(href: str) -> str:
    if href.startswith("//"):
        href = "https:" + href
    parsed = urlparse(href)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return href


def _squash(value: str) -> str:
    return _SPACE_RE.sub(" ", value).strip()

