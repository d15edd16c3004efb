"""
Research tools: web search, page browsing, raw HTTP, weather and feeds.

Browser-backed operations go through an injected BrowserDriver guarded by
the shared browser lock; plain HTTP with BeautifulSoup is the fallback.
"""

from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import parse_qs, quote, urlparse
import xml.etree.ElementTree as ET

import requests
from bs4 import BeautifulSoup

from taskpilot import logger
from taskpilot.errors import LockBusyError, ToolError
from .base import FunctionTool, ToolCategory, ToolParameter, ToolResult


USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) TaskPilot/1.0"
SEARCH_URL = "https://html.duckduckgo.com/html/"
WEATHER_URL = "https://wttr.in/{location}?format=j1"

HTTP_TIMEOUT = 15
MAX_PAGE_CHARS = 5000
MAX_BODY_CHARS = 10000
MAX_SUMMARY_CHARS = 200

ATOM_NS = "{http://www.w3.org/2005/Atom}"


class BrowserDriver(ABC):
    """
    Headless browser automation.

    Implementations live outside this package; failures are raised and the
    calling tool falls back to plain HTTP.
    """

    @abstractmethod
    def search(self, query: str, limit: int = 5) -> list[dict]:
        """Return results as dicts with title, url and snippet."""

    @abstractmethod
    def scrape(self, url: str, selector: Optional[str] = None) -> dict:
        """Return a dict with url, title and text."""


def _soup_text(soup, max_chars: int = MAX_PAGE_CHARS) -> str:
    for tag in soup(["script", "style", "noscript", "header", "footer", "nav", "aside", "form"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())[:max_chars]


def _unwrap_redirect(href: str) -> str:
    # Result links point at //duckduckgo.com/l/?uddg=<target>
    parsed = urlparse(href)
    if "uddg" in parse_qs(parsed.query):
        return parse_qs(parsed.query)["uddg"][0]
    if href.startswith("//"):
        return "https:" + href
    return href


def parse_search_results(html: str, limit: int = 5) -> list[dict]:
    """Extract title/url/snippet triples from a DuckDuckGo HTML results page."""
    soup = BeautifulSoup(html, "html.parser")
    results = []
    for node in soup.select(".result"):
        link = node.select_one("a.result__a")
        if not link or not link.get("href"):
            continue
        snippet = node.select_one(".result__snippet")
        results.append({
            "title": link.get_text(strip=True),
            "url": _unwrap_redirect(link["href"]),
            "snippet": snippet.get_text(" ", strip=True) if snippet else "",
        })
        if len(results) >= limit:
            break
    return results


def parse_feed(xml_text: str, limit: int = 5) -> dict:
    """
    Parse an RSS 2.0 or Atom document.

    Returns {"title": ..., "items": [{title, link, date, summary}]}.
    """
    root = ET.fromstring(xml_text)

    if root.tag == f"{ATOM_NS}feed":
        items = []
        for entry in root.findall(f"{ATOM_NS}entry")[:limit]:
            link = entry.find(f"{ATOM_NS}link")
            summary = entry.findtext(f"{ATOM_NS}summary") or entry.findtext(f"{ATOM_NS}content") or ""
            items.append({
                "title": (entry.findtext(f"{ATOM_NS}title") or "").strip(),
                "link": link.get("href") if link is not None else None,
                "date": entry.findtext(f"{ATOM_NS}updated") or entry.findtext(f"{ATOM_NS}published"),
                "summary": _strip_markup(summary)[:MAX_SUMMARY_CHARS],
            })
        return {"title": (root.findtext(f"{ATOM_NS}title") or "").strip(), "items": items}

    channel = root.find("channel")
    if channel is None:
        raise ToolError(f"Unsupported feed format: <{root.tag}>")

    items = []
    for item in channel.findall("item")[:limit]:
        items.append({
            "title": (item.findtext("title") or "").strip(),
            "link": (item.findtext("link") or "").strip() or None,
            "date": item.findtext("pubDate"),
            "summary": _strip_markup(item.findtext("description") or "")[:MAX_SUMMARY_CHARS],
        })
    return {"title": (channel.findtext("title") or "").strip(), "items": items}


def _strip_markup(text: str) -> str:
    if "<" not in text:
        return " ".join(text.split())
    return BeautifulSoup(text, "html.parser").get_text(" ", strip=True)


def register_web_tools(registry, guard=None, driver: BrowserDriver = None, session=None) -> None:
    """
    Register research tools.

    Args:
        registry: ToolRegistry to populate
        guard: ResourceGuard for the shared browser
        driver: optional BrowserDriver
        session: requests.Session (or compatible) used for HTTP calls
    """
    http = session or requests.Session()
    http.headers.update({"User-Agent": USER_AGENT})

    def with_browser(label, call):
        """Run a driver call under the browser lock. Returns None when unavailable."""
        if driver is None:
            return None
        try:
            if guard is None:
                return call()
            with guard.hold(label):
                return call()
        except LockBusyError as e:
            logger.warn('Browser busy, falling back to HTTP', reason=str(e))
        except Exception as e:
            logger.warn('Browser driver failed, falling back to HTTP', error=str(e))
        return None

    def web_search(query: str, limit: int = 5) -> ToolResult:
        limit = int(limit)
        results = with_browser(f"web_search: {query[:60]}", lambda: driver.search(query, limit))
        if results:
            return ToolResult(success=True, data={"query": query, "results": results[:limit], "source": "browser"})

        try:
            response = http.post(SEARCH_URL, data={"q": query}, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            return ToolResult(success=False, error=f"Search request failed: {e}")

        results = parse_search_results(response.text, limit)
        if not results:
            return ToolResult(success=False, error=f"No search results for: {query}")
        return ToolResult(success=True, data={"query": query, "results": results, "source": "http"})

    def browse_url(url: str, selector: str = None) -> ToolResult:
        page = with_browser(f"browse_url: {url[:60]}", lambda: driver.scrape(url, selector))
        if page:
            return ToolResult(success=True, data=page)

        try:
            response = http.get(url, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            return ToolResult(success=False, error=f"Failed to fetch {url}: {e}")

        soup = BeautifulSoup(response.text, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""

        if selector:
            nodes = soup.select(selector)
            if not nodes:
                return ToolResult(success=False, error=f"Selector matched nothing: {selector}")
            text = " ".join(" ".join(n.get_text(" ").split()) for n in nodes)[:MAX_PAGE_CHARS]
        else:
            text = _soup_text(soup)

        return ToolResult(success=True, data={"url": url, "title": title, "text": text})

    def http_request(url: str, method: str = "GET", headers: dict = None, body=None) -> ToolResult:
        method = method.upper()
        headers = dict(headers or {})
        kwargs = {"headers": headers, "timeout": HTTP_TIMEOUT}

        if body is not None and method in ("POST", "PUT", "PATCH"):
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["data"] = body
                headers.setdefault("Content-Type", "application/json")

        try:
            response = http.request(method, url, **kwargs)
        except requests.RequestException as e:
            return ToolResult(success=False, error=f"Request failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = response.text[:MAX_BODY_CHARS]

        result = {"status": response.status_code, "body": data}
        if response.ok:
            return ToolResult(success=True, data=result)
        return ToolResult(success=False, data=result, error=f"HTTP {response.status_code}")

    def get_weather(location: str) -> ToolResult:
        try:
            response = http.get(WEATHER_URL.format(location=quote(location)), timeout=HTTP_TIMEOUT)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            return ToolResult(success=False, error=f"Weather lookup failed: {e}")

        current = (payload.get("current_condition") or [{}])[0]
        if not current:
            return ToolResult(success=False, error=f"No weather data for {location}")

        return ToolResult(success=True, data={
            "location": location,
            "temp_c": current.get("temp_C"),
            "temp_f": current.get("temp_F"),
            "feels_like_c": current.get("FeelsLikeC"),
            "conditions": ((current.get("weatherDesc") or [{}])[0]).get("value"),
            "humidity": current.get("humidity"),
            "wind_kmh": current.get("windspeedKmph"),
        })

    def read_feed(url: str, limit: int = 5) -> ToolResult:
        try:
            response = http.get(url, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
            return ToolResult(success=True, data=parse_feed(response.text, int(limit)))
        except requests.RequestException as e:
            return ToolResult(success=False, error=f"Failed to fetch feed: {e}")
        except (ET.ParseError, ToolError) as e:
            return ToolResult(success=False, error=f"Failed to parse feed: {e}")

    registry.register(FunctionTool(
        name="web_search",
        description="Search the web and return titles, links and snippets. Use for current information.",
        category=ToolCategory.RESEARCH,
        func=web_search,
        parameters=[
            ToolParameter("query", "string", "Search query"),
            ToolParameter("limit", "integer", "Max results (default 5)", required=False, default=5),
        ],
    ))

    registry.register(FunctionTool(
        name="browse_url",
        description="Visit a URL and extract its readable text.",
        category=ToolCategory.RESEARCH,
        func=browse_url,
        parameters=[
            ToolParameter("url", "string", "URL to visit"),
            ToolParameter("selector", "string", "CSS selector to extract specific content", required=False),
        ],
    ))

    registry.register(FunctionTool(
        name="http_request",
        description="Make an HTTP request to any API endpoint. JSON responses are decoded.",
        category=ToolCategory.RESEARCH,
        func=http_request,
        parameters=[
            ToolParameter("url", "string", "URL to request"),
            ToolParameter("method", "string", "HTTP method (GET, POST, PUT, PATCH, DELETE)",
                          required=False, default="GET"),
            ToolParameter("headers", "object", "Request headers", required=False),
            ToolParameter("body", "string", "Request body for POST/PUT/PATCH", required=False),
        ],
    ))

    registry.register(FunctionTool(
        name="get_weather",
        description="Get current weather for a location (temperature in C and F, conditions, humidity, wind).",
        category=ToolCategory.RESEARCH,
        func=get_weather,
        parameters=[
            ToolParameter("location", "string", "City or location name"),
        ],
    ))

    registry.register(FunctionTool(
        name="read_feed",
        description="Read and parse an RSS or Atom feed.",
        category=ToolCategory.RESEARCH,
        func=read_feed,
        parameters=[
            ToolParameter("url", "string", "Feed URL"),
            ToolParameter("limit", "integer", "Max items (default 5)", required=False, default=5),
        ],
    ))
