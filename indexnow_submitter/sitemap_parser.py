import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union
from urllib.parse import urljoin

from lxml import etree  # Using lxml for robust parsing and namespace handling

from indexnow_submitter.errors import SitemapContentError
from indexnow_submitter.models import UrlEntry

logger = logging.getLogger(__name__)

# Namespace-agnostic paths: sitemaps in the wild are served both with and
# without the sitemaps.org namespace.
SITEMAP_LOC_XPATH = "//*[local-name()='sitemap']/*[local-name()='loc']"
URL_XPATH = "//*[local-name()='url']"
LOC_XPATH = "./*[local-name()='loc']"
LASTMOD_XPATH = "./*[local-name()='lastmod']"


@dataclass
class SitemapIndex:
    """A sitemap whose body lists child sitemap references."""

    children: List[str] = field(default_factory=list)


@dataclass
class UrlSet:
    """A leaf sitemap listing page URLs and their lastmod markers."""

    entries: List[UrlEntry] = field(default_factory=list)


ParsedSitemap = Union[SitemapIndex, UrlSet]


class SitemapParser:
    def __init__(self):
        # recover mode attempts to parse even mildly malformed XML
        self._xml_parser = etree.XMLParser(
            recover=True,
            remove_blank_text=True,
            resolve_entities=False,
            no_network=True,
        )

    def parse_sitemap(self, xml_content: Union[bytes, str], sitemap_url: str = "") -> ParsedSitemap:
        """
        Parses the given XML sitemap content.

        Determines if it's a sitemap index or a URL set and extracts relevant data.

        Args:
            xml_content: The XML content of the sitemap.
            sitemap_url: The URL from which this sitemap was fetched (for logging
                and for resolving relative child references).

        Returns:
            SitemapIndex with child sitemap URLs, or UrlSet with UrlEntry items.

        Raises:
            SitemapContentError: the body is empty or has no XML root element.
        """
        if isinstance(xml_content, str):
            # lxml requires bytes when the document carries an encoding declaration
            xml_content = xml_content.encode("utf-8")

        if not xml_content or not xml_content.strip():
            raise SitemapContentError(sitemap_url, "empty document")

        try:
            root = etree.fromstring(xml_content, parser=self._xml_parser)
        except etree.XMLSyntaxError as e:
            raise SitemapContentError(sitemap_url, f"XMLSyntaxError: {e}")

        if root is None:
            raise SitemapContentError(sitemap_url, "no XML root element")

        root_tag_name = etree.QName(root).localname

        if root_tag_name == "sitemapindex":
            logger.debug(f"Parsing as sitemap index: {sitemap_url}")
            return SitemapIndex(children=self._extract_sitemap_links_from_index(root, sitemap_url))
        if root_tag_name == "urlset":
            logger.debug(f"Parsing as URL set: {sitemap_url}")
            return UrlSet(entries=self._extract_urls_from_urlset(root, sitemap_url))

        # Fallback: try to find sitemap or url tags anyway
        logger.warning(
            f"Unknown root tag '{root_tag_name}' in sitemap from {sitemap_url}. Attempting to find URLs."
        )
        if root.xpath(SITEMAP_LOC_XPATH):
            return SitemapIndex(children=self._extract_sitemap_links_from_index(root, sitemap_url))
        entries = self._extract_urls_from_urlset(root, sitemap_url)
        if not entries:
            logger.warning(f"No sitemap or url tags found in {sitemap_url}.")
        return UrlSet(entries=entries)

    def _extract_sitemap_links_from_index(self, root_element: etree._Element, sitemap_url: str) -> List[str]:
        """Extracts child sitemap URLs from a sitemapindex element."""
        sitemap_urls = []
        for loc_element in root_element.xpath(SITEMAP_LOC_XPATH):
            loc = _element_text(loc_element)
            if loc:
                sitemap_urls.append(urljoin(sitemap_url, loc) if sitemap_url else loc)
        logger.debug(f"Extracted {len(sitemap_urls)} sitemap links from index.")
        return sitemap_urls

    def _extract_urls_from_urlset(self, root_element: etree._Element, sitemap_url: str) -> List[UrlEntry]:
        """Extracts URL entries from a urlset element. A missing lastmod is not an error."""
        url_entries = []
        for url_element in root_element.xpath(URL_XPATH):
            locs = url_element.xpath(LOC_XPATH)
            loc = _element_text(locs[0]) if locs else None
            if not loc:
                # A URL entry without a <loc> is invalid according to sitemap protocol, skip it.
                logger.warning(f"Skipping URL entry without <loc> tag in {sitemap_url}")
                continue
            if not loc.startswith(("http://", "https://")):
                logger.warning(f"Skipping non-absolute URL '{loc}' in {sitemap_url}")
                continue

            lastmods = url_element.xpath(LASTMOD_XPATH)
            lastmod = _element_text(lastmods[0]) if lastmods else None

            url_entries.append(UrlEntry(url=loc, modified_at=lastmod))
        logger.debug(f"Extracted {len(url_entries)} URL entries from urlset.")
        return url_entries


def _element_text(element: etree._Element) -> Optional[str]:
    text = element.text
    if text is None:
        return None
    text = text.strip()
    return text or None
