"""LLM field extraction over collected search documents."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import httpx

from dealhub.utils.retry import ServiceOverloadedError, retry_async

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-1.5-flash"
OVERLOADED_STATUSES = {429, 503}
RETRY_DELAY = 10.0
_JSON_RE = re.compile(r"\{[\s\S]*\}")

PROMPT_TEMPLATE = """
Analyze this COMPLETE scraped data for "{name}" including the search results AND all ranked page content.

COMPLETE SCRAPED DATA:
{content}

Return ONLY a JSON object with the following structure (no additional text):
{{
    "software_name": "exact software name",
    "best_discount": "highest discount percentage found across ALL content (number only)",
    "all_coupon_codes": ["every", "coupon", "code", "found"],
    "seo_description": "compelling 150-160 character description",
    "detailed_description": "200-300 word description of what the software does, key benefits and target users",
    "categories": ["relevant", "categories"],
    "primary_category": "single most relevant category",
    "expiration_info": "SHORT expiration text (2-4 words), e.g. 'Limited Time Only', 'New Users', 'Annual Plans'",
    "logo_url": "official domain for '{name}' such as '{slug}.com', domain only, ignore social media; null if not found",
    "comprehensive_about": "About {name} with varied, natural section titles, under 2300 characters, only sections with real data"
}}

Rules:
- Find the HIGHEST discount from any page
- Categories come from: Automation, Productivity, Design, Writing, Software, Tools, Services, Marketing, Development, Business, AI, Analytics, CRM, E-commerce, Education, Finance
- Software can belong to several categories; choose one primary category
- Return valid JSON only
"""


def build_prompt(content: str, software_name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "", software_name.lower())
    return PROMPT_TEMPLATE.format(name=software_name, content=content, slug=slug)


def extract_json(reply: str) -> dict[str, Any] | None:
    match = _JSON_RE.search(reply or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class GeminiExtractor:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        session: httpx.AsyncClient | None = None,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY")
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY is not configured")
        self.model = model or os.environ.get("GEMINI_MODEL", DEFAULT_MODEL)
        self.session = session or httpx.AsyncClient(timeout=120.0)
        self.retry_delay = retry_delay

    async def close(self) -> None:
        await self.session.aclose()

    async def analyze(self, content: str, software_name: str) -> dict[str, Any] | None:
        """Return the extracted fields, or None when the reply carries no JSON object."""
        generate = retry_async(base_delay=self.retry_delay)(self._generate)
        reply = await generate(build_prompt(content, software_name))
        data = extract_json(reply)
        if data is None:
            logger.warning("No JSON found in extraction reply for %s", software_name)
            return None
        logger.info("Extraction for %s returned fields: %s", software_name, ", ".join(sorted(data)))
        return data

    async def _generate(self, prompt: str) -> str:
        response = await self.session.post(
            GEMINI_ENDPOINT.format(model=self.model),
            params={"key": self.api_key},
            json={"contents": [{"parts": [{"text": prompt}]}]},
        )
        if response.status_code in OVERLOADED_STATUSES:
            raise ServiceOverloadedError(f"Model overloaded ({response.status_code})")
        response.raise_for_status()
        payload = response.json()
        candidates = payload.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)
