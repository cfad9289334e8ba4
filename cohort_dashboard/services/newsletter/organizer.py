# cohort_dashboard/services/newsletter/organizer.py
"""
AI newsletter organizer.

Sends the raw scraped sections through the model chain and gets back
re-organized sections with ``timeSensitive`` annotations. When the chain is
exhausted the caller builds the unorganized fallback with
``build_fallback_newsletter``.
"""

import time
from datetime import date
from typing import Any

from bs4 import BeautifulSoup
from pydantic import ValidationError

from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.domain.dashboard_domain import (
    AIDebugInfo,
    NewsletterItem,
    NewsletterPayload,
    NewsletterSection,
    TimeSensitiveInfo,
)
from cohort_dashboard.services.ai.model_chain import (
    AIExhaustedError,
    MalformedResponseError,
    ModelFallbackChain,
    parse_json_object,
)
from cohort_dashboard.services.newsletter.scraper import sanitize_html

logger = get_logger(__name__)

FALLBACK_SECTION_TITLE = "Newsletter Updates"
MAX_PROMPT_CHARS = 60000

SYSTEM_MESSAGE = (
    "You are a newsletter content organizer. Always return valid JSON with "
    "preserved content and hyperlinks."
)


class NewsletterOrganizationError(Exception):
    """Raised when the AI organizer cannot produce usable sections."""

    def __init__(self, message: str, models_tried: list[str] | None = None, recoverable: bool = True):
        super().__init__(message)
        self.models_tried = models_tried or []
        self.recoverable = recoverable


def strip_tags(html: str) -> str:
    text = BeautifulSoup(html or "", "html.parser").get_text(" ", strip=True)
    return " ".join(text.split())


def _build_prompt(raw_sections: list[NewsletterSection], today: date | None) -> str:
    raw_content = "\n\n".join(
        f"[{section.section_title}]\n"
        + "\n".join(f"{item.title}: {item.html}" for item in section.items)
        for section in raw_sections
    )[:MAX_PROMPT_CHARS]

    reference_date = today.isoformat() if today else "the newsletter's publication date"

    return f"""Transform the following newsletter content into a clean, structured format for students.

REQUIREMENTS:
1. Preserve ALL content. Do not truncate, summarize or remove information.
2. Preserve ALL hyperlinks exactly (<a href="..."> tags, link text and URLs).
3. Group related content into sections such as "This Week", "Announcements",
   "Events", "Career Corner". Keep every original section.
4. Use <h4> for item titles, <h5> for subheadings, <ul>/<li> for lists and <p> for paragraphs.
5. For every item that mentions a date, deadline or event, add a "timeSensitive" object:
   - "dates": all relevant dates as YYYY-MM-DD (resolve relative to {reference_date})
   - "deadline": YYYY-MM-DD when the item is a deadline
   - "eventType": one of deadline | event | announcement | reminder
   - "priority": one of high | medium | low
   Omit "timeSensitive" when no dates are found.

OUTPUT FORMAT - return ONLY this JSON object:
{{
  "sections": [
    {{
      "sectionTitle": "Section Name",
      "items": [
        {{
          "title": "Item Title",
          "html": "<h4>Item Title</h4><p>Content with <a href='url'>links</a></p>",
          "timeSensitive": {{"dates": ["2025-09-21"], "eventType": "deadline", "priority": "high"}}
        }}
      ]
    }}
  ],
  "debugInfo": {{
    "reasoning": "Explanation of organization decisions",
    "sectionDecisions": ["How sections were structured"],
    "edgeCasesHandled": ["Special cases addressed"]
  }}
}}

Raw newsletter content to organize:
{raw_content}"""


def _valid_iso_date(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError:
        return None


def _parse_time_sensitive(raw: Any) -> TimeSensitiveInfo | None:
    if not isinstance(raw, dict):
        return None

    dates = [d for d in (_valid_iso_date(v) for v in raw.get("dates") or []) if d]
    deadline = _valid_iso_date(raw.get("deadline"))
    if deadline and deadline not in dates:
        dates.append(deadline)
    if not dates:
        return None

    try:
        return TimeSensitiveInfo(
            dates=dates,
            deadline=deadline,
            event_type=raw.get("eventType") or "announcement",
            priority=raw.get("priority") or "medium",
        )
    except ValidationError:
        return TimeSensitiveInfo(dates=dates, deadline=deadline)


def _as_string_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    if value:
        return [str(value)]
    return []


def parse_organized_response(text: str) -> dict[str, Any]:
    """Validate the organizer completion; raises MalformedResponseError so the chain moves on."""
    result = parse_json_object(text)
    raw_sections = result.get("sections")
    if not isinstance(raw_sections, list) or not raw_sections:
        raise MalformedResponseError("Organizer response has no sections")

    sections: list[NewsletterSection] = []
    for raw_section in raw_sections:
        if not isinstance(raw_section, dict):
            continue
        items = []
        for raw_item in raw_section.get("items") or []:
            if not isinstance(raw_item, dict) or not raw_item.get("title"):
                continue
            items.append(
                NewsletterItem(
                    title=str(raw_item["title"]),
                    html=sanitize_html(str(raw_item.get("html") or "")),
                    time_sensitive=_parse_time_sensitive(raw_item.get("timeSensitive")),
                )
            )
        sections.append(
            NewsletterSection(
                section_title=str(raw_section.get("sectionTitle") or "Updates"),
                items=items,
            )
        )

    if not sections:
        raise MalformedResponseError("Organizer response sections are malformed")

    return {"sections": sections, "debug": result.get("debugInfo") or {}}


class NewsletterOrganizer:
    def __init__(self, chain: ModelFallbackChain):
        self.chain = chain

    async def organize(
        self,
        raw_sections: list[NewsletterSection],
        source_url: str,
        title: str | None = None,
        today: date | None = None,
    ) -> NewsletterPayload:
        """
        Re-organize raw sections with the model chain.

        Raises:
            NewsletterOrganizationError: every model failed or returned unusable output
        """
        started = time.monotonic()
        logger.info(
            "Starting AI newsletter organization",
            raw_sections=len(raw_sections),
            models=self.chain.models,
        )

        try:
            result = await self.chain.run(
                SYSTEM_MESSAGE,
                _build_prompt(raw_sections, today),
                parse=parse_organized_response,
                label="newsletter_organizer",
            )
        except AIExhaustedError as e:
            raise NewsletterOrganizationError(
                f"AI organization failed: {e}", models_tried=e.models_tried
            ) from e

        sections = result.parsed["sections"]
        debug = result.parsed["debug"] if isinstance(result.parsed["debug"], dict) else {}
        processing_time = int((time.monotonic() - started) * 1000)

        annotated = sum(1 for s in sections for item in s.items if item.time_sensitive)
        logger.info(
            "Newsletter organization completed",
            sections=len(sections),
            time_sensitive_items=annotated,
            model=result.model,
            processing_time_ms=processing_time,
        )

        return NewsletterPayload(
            source_url=source_url,
            title=title,
            sections=sections,
            ai_debug_info=AIDebugInfo(
                reasoning=str(debug.get("reasoning") or "AI processing completed"),
                section_decisions=_as_string_list(debug.get("sectionDecisions")),
                edge_cases_handled=_as_string_list(debug.get("edgeCasesHandled")),
                total_sections=len(sections),
                processing_time=processing_time,
                model=result.model,
                models_tried=result.models_tried,
                model_latency=result.ms,
            ),
        )


def build_fallback_newsletter(
    raw: NewsletterPayload,
    reason: str,
    models_tried: list[str] | None = None,
    processing_time: int = 0,
) -> NewsletterPayload:
    """
    Unorganized fallback: every raw item, in scrape order, under one catch-all
    section. Always yields exactly one section.
    """
    items = [item for _, item in raw.iter_items()]
    return NewsletterPayload(
        source_url=raw.source_url,
        title=raw.title,
        sections=[NewsletterSection(section_title=FALLBACK_SECTION_TITLE, items=items)],
        ai_debug_info=AIDebugInfo(
            reasoning=f"AI processing failed: {reason}. Returning original content.",
            total_sections=1,
            processing_time=processing_time,
            models_tried=models_tried or [],
        ),
    )
