"""
Nearby event search through SerpAPI.

Searches never raise: configuration, transport and decoding failures are
logged and returned as an error-shaped result so the popularity flow can
continue without search context.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from eventai.models.config import EventAIConfig
from eventai.models.validation import parse_datetime


logger = structlog.get_logger(__name__)

SERP_API_URL = "https://serpapi.com/search.json"
API_VERSION = "1.0"

MIN_RELEVANCE = 0.4
HIGH_RELEVANCE = 0.6
MAX_RECOMMENDED = 8
EVENT_KEYWORDS = ("event", "concert", "show", "festival", "exhibition", "conference")

_SNIPPET_DATES = (
    re.compile(r"\b(\w+ \d{1,2},? \d{4})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2} \w+ \d{4})\b", re.IGNORECASE),
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
)
_SNIPPET_LOCATIONS = (
    re.compile(r"at ([A-Z][a-zA-Z\s]+(?:Hall|Center|Centre|Stadium|Arena|Park))", re.IGNORECASE),
    re.compile(r"in ([A-Z][a-zA-Z\s]+(?:City|Town|District))", re.IGNORECASE),
    re.compile(r"near ([A-Z][a-zA-Z\s]+)", re.IGNORECASE),
)


_API_KEY_PARAM = re.compile(r"(api_key=)[^&\s'\"]+")


class SerpSearchError(Exception):
    """Search could not be performed."""


def redact_api_key(message: str) -> str:
    """Hide the ``api_key`` query value that httpx errors echo back in URLs."""
    return _API_KEY_PARAM.sub(r"\1***", message)


def format_search_date(value: Any) -> str:
    """``9 October 2025`` style date used in search queries."""
    parsed = parse_datetime(value)
    if parsed is None:
        return str(value or "")
    return f"{parsed.day} {parsed.strftime('%B %Y')}"


def extract_date_from_snippet(snippet: Optional[str]) -> Optional[str]:
    if not snippet:
        return None
    for pattern in _SNIPPET_DATES:
        match = pattern.search(snippet)
        if match:
            return match.group(1)
    return None


def extract_location_from_snippet(snippet: Optional[str]) -> Optional[str]:
    if not snippet:
        return None
    for pattern in _SNIPPET_LOCATIONS:
        match = pattern.search(snippet)
        if match:
            return match.group(1).strip()
    return None


def calculate_relevance_score(result: Dict[str, Any], event_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Score an organic result against the event.

    Venue +0.4, event name +0.3, month and year +0.2, event keywords +0.1
    each (at most +0.2) and a dated result +0.1, capped at 1.0.
    """
    score = 0.0
    matched: List[str] = []
    venue = (event_data.get("venue") or "").lower()
    name = (event_data.get("name") or "").lower()
    text = f"{result.get('title') or ''} {result.get('snippet') or ''}".lower()

    if venue and venue in text:
        score += 0.4
        matched.append("venue")

    if name and name in text:
        score += 0.3
        matched.append("event_name")

    start = parse_datetime(event_data.get("dateOfEventStart"))
    if start is not None and start.strftime("%B").lower() in text and str(start.year) in text:
        score += 0.2
        matched.append("date")

    found = [keyword for keyword in EVENT_KEYWORDS if keyword in text]
    if found:
        score += 0.1 * min(len(found), 2)
        matched.extend(found)

    if result.get("date"):
        score += 0.1
        matched.append("has_date")

    return {"score": min(round(score, 2), 1.0), "matched_keywords": matched}


def get_display_suggestion(results: List[Dict[str, Any]], ai_overview: Optional[Dict[str, Any]]) -> str:
    if ai_overview and ai_overview["text_blocks_count"] > 0:
        return "show_ai_overview"
    if any(result["type"] == "event_result" for result in results):
        return "show_event_cards"
    if sum(1 for result in results if result.get("is_highly_relevant")) >= 3:
        return "show_relevant_list"
    if results:
        return "show_search_results"
    return "show_no_results"


def _event_result(event: Dict[str, Any], position: int) -> Dict[str, Any]:
    tickets = event.get("ticket_info") or []
    first_ticket = tickets[0] if tickets else {}
    when = event.get("date") or {}
    date = (when.get("start_date") or when.get("when")) if isinstance(when, dict) else str(when)
    address = event.get("address")

    return {
        "type": "event_result",
        "title": event.get("title") or "",
        "description": event.get("description") or "",
        "url": event.get("link") or first_ticket.get("link") or "",
        "source": first_ticket.get("source") or "Google Events",
        "position": position,
        "date": date,
        "location": ", ".join(address) if isinstance(address, list) else (event.get("venue") or address),
        "thumbnail": event.get("thumbnail"),
        "venue": event.get("venue"),
        "ticket_info": tickets or None,
    }


def transform_serp_response(serp_data: Dict[str, Any], event_data: Dict[str, Any], query: str) -> Dict[str, Any]:
    """Normalise a raw SerpAPI payload into scored results plus a display summary."""
    results: List[Dict[str, Any]] = [
        _event_result(event, index)
        for index, event in enumerate(serp_data.get("events_results") or [], start=1)
    ]

    for organic in serp_data.get("organic_results") or []:
        relevance = calculate_relevance_score(organic, event_data)
        if relevance["score"] < MIN_RELEVANCE:
            continue
        snippet = organic.get("snippet")
        results.append({
            "type": "organic_result",
            "title": organic.get("title") or "",
            "description": snippet or "",
            "url": organic.get("link") or "",
            "source": organic.get("source") or organic.get("displayed_link") or "",
            "position": organic.get("position") or 0,
            "date": organic.get("date") or extract_date_from_snippet(snippet),
            "location": extract_location_from_snippet(snippet),
            "snippet_highlighted_words": organic.get("snippet_highlighted_words") or [],
            "relevance_score": relevance["score"],
            "is_highly_relevant": relevance["score"] >= HIGH_RELEVANCE,
            "matched_keywords": relevance["matched_keywords"],
        })

    raw_overview = serp_data.get("ai_overview")
    ai_overview = None
    if raw_overview:
        ai_overview = {
            "text_blocks": raw_overview.get("text_blocks") or [],
            "thumbnail": raw_overview.get("thumbnail"),
            "references": raw_overview.get("references") or [],
            "has_overview": True,
            "text_blocks_count": len(raw_overview.get("text_blocks") or []),
            "references_count": len(raw_overview.get("references") or []),
            "error": raw_overview.get("error"),
            "page_token": raw_overview.get("page_token"),
            "serpapi_link": raw_overview.get("serpapi_link"),
        }

    highly_relevant = [result for result in results if result.get("is_highly_relevant")]
    has_overview_text = bool(ai_overview and ai_overview["text_blocks_count"] > 0)

    if len(highly_relevant) >= 3:
        data_quality = "high"
    elif highly_relevant:
        data_quality = "medium"
    elif results:
        data_quality = "low"
    else:
        data_quality = "none"

    parameters = serp_data.get("search_parameters") or {}
    information = serp_data.get("search_information") or {}

    return {
        "search_query": query,
        "search_timestamp": datetime.now(timezone.utc).isoformat(),
        "results": results,
        "ai_overview": ai_overview,
        "related_searches": serp_data.get("related_searches") or [],
        "summary": {
            "has_ai_overview": has_overview_text,
            "has_events": any(result["type"] == "event_result" for result in results),
            "has_relevant_results": bool(highly_relevant),
            "total_results": len(results),
            "highly_relevant_count": len(highly_relevant),
            "recommended_results": highly_relevant[:MAX_RECOMMENDED],
            "data_quality": data_quality,
            "display_suggestion": get_display_suggestion(results, ai_overview),
        },
        "serp_metadata": {
            "api_version": API_VERSION,
            "search_id": (serp_data.get("search_metadata") or {}).get("id"),
            "total_results": information.get("total_results") or 0,
            "search_time": information.get("time_taken_displayed") or 0,
            "search_parameters": {
                "engine": parameters.get("engine") or "google",
                "query": parameters.get("q") or query,
                "location_requested": parameters.get("location_requested"),
                "location_used": parameters.get("location_used"),
                "gl": parameters.get("gl"),
                "hl": parameters.get("hl"),
            },
            "success": True,
            "organic_results_count": len(serp_data.get("organic_results") or []),
            "events_results_count": len(serp_data.get("events_results") or []),
        },
    }


def _has_overview_content(overview: Optional[Dict[str, Any]]) -> bool:
    overview = overview or {}
    return bool(overview.get("text_blocks") or overview.get("references"))


class SerpService:
    """Google search via SerpAPI for events happening around a venue."""

    def __init__(self, config: EventAIConfig):
        self.api_key = config.serp_api_key
        self.location = config.serp_location
        self.timeout = config.serp_timeout / 1000.0
        self.logger = logger.bind(component="serp_service")

        if not self.api_key:
            self.logger.warning("SERP_API_KEY not configured, nearby event search is disabled")

    async def _get(self, params: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
            response = await client.get(
                SERP_API_URL,
                params={"api_key": self.api_key, **params},
                headers={"Accept": "application/json"},
            )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise SerpSearchError(f"Unexpected SerpAPI response: {type(data).__name__}")
        return data

    async def fetch_ai_overview(self, page_token: str) -> Optional[Dict[str, Any]]:
        """Second-stage AI overview request; None when it fails."""
        try:
            return await self._get({"engine": "google_ai_overview", "page_token": page_token})
        except (SerpSearchError, httpx.HTTPError, ValueError) as e:
            self.logger.error("Failed to fetch AI overview", error=redact_api_key(str(e)))
            return None

    async def _resolve_overview(self, data: Dict[str, Any]) -> None:
        overview = data.get("ai_overview") or {}
        if overview.get("page_token"):
            full = await self.fetch_ai_overview(overview["page_token"])
            if full:
                data["ai_overview"] = full

    async def search_nearby_events(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
        """Nearby events for the venue and day. Failures come back as an error-shaped result, never raised."""
        venue = event_data.get("venue") or ""
        search_date = format_search_date(event_data.get("dateOfEventStart"))
        query = f"nearby event at {venue} on {search_date}"

        try:
            if not self.api_key:
                raise SerpSearchError("SERP_API_KEY is not configured in environment variables")

            params = {
                "engine": "google",
                "q": query,
                "location": self.location,
                "gl": "us",
                "hl": "en",
                "num": 10,
            }
            self.logger.info("Searching nearby events", event_name=event_data.get("name"), query=query)
            data = await self._get(params)
            if data.get("error"):
                raise SerpSearchError(str(data["error"]))

            await self._resolve_overview(data)

            if not _has_overview_content(data.get("ai_overview")) and not (data.get("ai_overview") or {}).get("page_token"):
                alternative = f"what events happening at {venue} on {search_date}"
                try:
                    alt = await self._get({**params, "q": alternative})
                    if (alt.get("ai_overview") or {}).get("text_blocks"):
                        data["ai_overview"] = alt["ai_overview"]
                        await self._resolve_overview(data)
                    else:
                        self.logger.info("Alternative query returned no AI overview", query=alternative)
                except (SerpSearchError, httpx.HTTPError, ValueError) as e:
                    self.logger.warning("Alternative query failed", error=redact_api_key(str(e)))

            nearby = transform_serp_response(data, event_data, query)
            self.logger.info("Nearby event search completed", event_name=event_data.get("name"),
                             results=len(nearby["results"]),
                             data_quality=nearby["summary"]["data_quality"])
            return nearby

        except Exception as e:
            message = redact_api_key(str(e)) or type(e).__name__
            self.logger.error("Nearby event search failed", event_name=event_data.get("name"), error=message)
            return {
                "search_query": query,
                "search_timestamp": datetime.now(timezone.utc).isoformat(),
                "error": message,
                "results": [],
                "ai_overview": None,
                "summary": {
                    "has_ai_overview": False,
                    "has_events": False,
                    "has_relevant_results": False,
                    "total_results": 0,
                    "highly_relevant_count": 0,
                    "recommended_results": [],
                    "data_quality": "none",
                    "display_suggestion": "show_no_results",
                },
                "serp_metadata": {
                    "success": False,
                    "error_message": message,
                    "api_version": API_VERSION,
                },
            }

    async def health_check(self) -> Dict[str, Any]:
        if not self.api_key:
            return {
                "healthy": False,
                "configured": False,
                "message": "SERP_API_KEY not configured in environment variables",
            }

        try:
            data = await self._get({"q": "test", "engine": "google", "hl": "en", "num": 1}, timeout=5.0)
        except (SerpSearchError, httpx.HTTPError, ValueError) as e:
            message = redact_api_key(str(e))
            self.logger.error("SerpAPI health check failed", error=message)
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            return {
                "healthy": False,
                "configured": True,
                "error": message,
                "message": "Serp API call failed",
                "status": status,
            }

        return {
            "healthy": True,
            "configured": True,
            "message": "Serp API is working correctly",
            "test_search_results": (data.get("search_information") or {}).get("total_results") or 0,
        }
