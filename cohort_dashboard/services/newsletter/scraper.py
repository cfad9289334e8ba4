# cohort_dashboard/services/newsletter/scraper.py
"""
Newsletter scraping collaborator.

Finds the latest campaign on the Mailchimp archive page and carves it into
raw ``NewsletterSection`` objects (title/html pairs). Section carving is
heuristic: h1 headers inside text blocks start sections, following blocks
become items; pages without headers collapse into a single section.
"""

from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from cohort_dashboard.config import settings
from cohort_dashboard.infrastructure.observability.logging import get_logger
from cohort_dashboard.models.domain.dashboard_domain import (
    NewsletterItem,
    NewsletterPayload,
    NewsletterSection,
)

logger = get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; CohortDashboard/1.0)"

ALLOWED_TAGS = {
    "p", "div", "br", "strong", "b", "em", "i", "u", "a", "span",
    "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "li",
}
DROPPED_TAGS = {"script", "style", "iframe", "object", "embed", "form", "noscript"}
ALLOWED_ATTRIBUTES = {"a": {"href", "name", "target", "rel"}, "*": {"class", "id"}}
ALLOWED_SCHEMES = ("http://", "https://", "mailto:")


class NewsletterScrapeError(Exception):
    """Raised when the archive or campaign page cannot be fetched or parsed."""

    def __init__(self, message: str, url: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.url = url
        self.recoverable = recoverable


def sanitize_html(html: str) -> str:
    """Allowlist sanitizer: keeps structure and hyperlinks, drops everything else."""
    soup = BeautifulSoup(html or "", "html.parser")

    for tag in soup.find_all(DROPPED_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue

        allowed = ALLOWED_ATTRIBUTES.get(tag.name, set()) | ALLOWED_ATTRIBUTES["*"]
        for attr in list(tag.attrs):
            if attr not in allowed:
                del tag.attrs[attr]

        if tag.name == "a":
            href = tag.get("href", "")
            if href and not href.lower().startswith(ALLOWED_SCHEMES):
                del tag.attrs["href"]
            if tag.get("target") == "_blank" and not tag.get("rel"):
                tag["rel"] = "noopener noreferrer"

    return str(soup).strip()


def _absolutize_links(soup: BeautifulSoup, base: str) -> None:
    for anchor in soup.select("a[href]"):
        anchor["href"] = urljoin(base, anchor["href"])
    for image in soup.select("img[src]"):
        image["src"] = urljoin(base, image["src"])


def _text(node: Tag) -> str:
    return " ".join(node.get_text(" ").split())


def _block_to_item(block: Tag) -> NewsletterItem | None:
    text = _text(block)
    if len(text) <= 5:
        return None

    heading = block.find(["h2", "h3", "h4", "strong", "b"])
    title = _text(heading) if heading else text.split(". ")[0]
    if not title or len(title) >= 100:
        title = text[:60] + ("..." if len(text) > 60 else "")

    return NewsletterItem(title=title, html=sanitize_html(block.decode_contents()))


def parse_newsletter_html(html: str, url: str) -> NewsletterPayload:
    """Carve a campaign page into raw sections."""
    soup = BeautifulSoup(html, "html.parser")
    _absolutize_links(soup, url)

    title_tag = soup.find("title") or soup.find("h1")
    title = _text(title_tag) if title_tag else None

    sections: list[NewsletterSection] = []
    for header in soup.find_all("h1"):
        section_title = _text(header)
        if not section_title or section_title == title:
            continue

        block = header.find_parent(class_=["mcnTextBlock", "mcnCaptionBlock"])
        if block is None:
            continue

        items: list[NewsletterItem] = []
        for sibling in block.find_next_siblings():
            classes = sibling.get("class") or []
            if "mcnTextBlock" not in classes and "mcnCaptionBlock" not in classes:
                continue
            if sibling.find("h1"):
                break
            item = _block_to_item(sibling)
            if item:
                items.append(item)

        if items:
            sections.append(NewsletterSection(section_title=section_title, items=items))

    if not sections:
        items = []
        for element in soup.find_all(["p", "li"]):
            text = _text(element)
            if len(text) > 10:
                items.append(
                    NewsletterItem(
                        title=text[:60] + ("..." if len(text) > 60 else ""),
                        html=sanitize_html(element.decode_contents()),
                    )
                )
        if items:
            sections.append(NewsletterSection(section_title="Newsletter Content", items=items))

    if not sections:
        body = soup.select_one("#templateBody") or soup.body or soup
        sections.append(
            NewsletterSection(
                section_title="Newsletter",
                items=[NewsletterItem(title="Content", html=sanitize_html(body.decode_contents()))],
            )
        )

    return NewsletterPayload(source_url=url, title=title, sections=sections)


class NewsletterScraper:
    """Fetches the archive listing and the latest campaign page."""

    def __init__(self, archive_url: str | None = None, timeout: float | None = None):
        self.archive_url = archive_url or settings.NEWSLETTER_ARCHIVE_URL
        self.timeout = timeout or settings.SCRAPE_TIMEOUT_SECONDS

    async def _fetch_text(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            logger.error("Newsletter fetch failed", url=url, error=str(e))
            raise NewsletterScrapeError(f"Failed to fetch {url}: {e}", url=url) from e

    async def get_latest_newsletter_url(self) -> str:
        html = await self._fetch_text(self.archive_url)
        soup = BeautifulSoup(html, "html.parser")

        link = (
            soup.select_one('a[href*="mailchi.mp"]')
            or soup.select_one("#archive-list a[href]")
            or soup.select_one(".campaigns a[href]")
            or soup.select_one("a[href]")
        )
        if link is None:
            raise NewsletterScrapeError("No campaign link found on archive page.", self.archive_url)

        latest = urljoin(self.archive_url, link["href"])
        logger.info("Latest newsletter URL found", url=latest)
        return latest

    async def scrape_newsletter(self, url: str) -> NewsletterPayload:
        html = await self._fetch_text(url)
        payload = parse_newsletter_html(html, url)
        logger.info(
            "Newsletter scraped",
            url=url,
            sections=len(payload.sections),
            items=sum(len(section.items) for section in payload.sections),
        )
        return payload
