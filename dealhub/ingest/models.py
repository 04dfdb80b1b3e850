"""Ingestion data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

LOGO_SERVICE = "https://logo.clearbit.com/"


@dataclass(slots=True)
class IngestPayload:
    discount: str | None = None
    description: str | None = None
    about: str | None = None
    coupon_code: str | None = None
    time_limit: str | None = None
    logo_domain: str | None = None
    categories: list[str] = field(default_factory=list)
    primary_category: str | None = None

    @property
    def logo_url(self) -> str | None:
        if not self.logo_domain:
            return None
        return LOGO_SERVICE + self.logo_domain.strip()

    def deal_fields(self) -> dict[str, Any]:
        fields = asdict(self)
        for key in ("logo_domain", "categories", "primary_category"):
            fields.pop(key)
        fields["logo_url"] = self.logo_url
        return fields

    @classmethod
    def from_analysis(cls, data: Mapping[str, Any]) -> "IngestPayload":
        """Normalize the field-extraction reply into store-ready values."""
        best = _clean(data.get("best_discount"))
        codes = data.get("all_coupon_codes") or []
        categories = [str(item).strip() for item in data.get("categories") or [] if str(item).strip()]
        return cls(
            discount=f"{best}% OFF" if best else None,
            description=_clean(data.get("detailed_description")) or _clean(data.get("seo_description")),
            about=format_about(data.get("comprehensive_about")),
            coupon_code=_clean(codes[0]) if codes else None,
            time_limit=_clean(data.get("expiration_info")),
            logo_domain=_clean(data.get("logo_url")),
            categories=categories,
            primary_category=_clean(data.get("primary_category")),
        )


@dataclass(slots=True)
class IngestResult:
    deal_id: int
    software_name: str
    created: bool


def format_about(value: Any) -> str | None:
    """Flatten the long-form about text, which may come back as text, a list or sections."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "\n\n".join(str(item) for item in value if item)
    if isinstance(value, Mapping):
        sections = [
            f"{str(key).replace('_', ' ').upper()}\n{text}"
            for key, text in value.items()
            if text
        ]
        return "\n\n".join(sections) or None
    return str(value)


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none"}:
        return None
    return text
