"""Tests for nearby event search."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from eventai.services.serp_service import (
    SerpService,
    calculate_relevance_score,
    extract_date_from_snippet,
    extract_location_from_snippet,
    format_search_date,
    transform_serp_response,
)


@pytest.fixture
def event_data():
    return {
        "eventId": "evt_123",
        "name": "Summer Music Festival",
        "venue": "Bukit Jalil National Stadium",
        "dateOfEventStart": "2025-10-09T18:00:00+00:00",
    }


@pytest.fixture
def serp_payload():
    return {
        "search_metadata": {"id": "search-1"},
        "search_parameters": {"engine": "google", "q": "nearby event", "gl": "us", "hl": "en"},
        "search_information": {"total_results": 1200, "time_taken_displayed": 0.42},
        "organic_results": [
            {
                "position": 1,
                "title": "Summer Music Festival at Bukit Jalil National Stadium",
                "snippet": "Concert and festival on October 9, 2025",
                "link": "https://tickets.example.com/smf",
                "date": "Oct 9, 2025",
            },
            {
                "position": 2,
                "title": "Bukit Jalil National Stadium parking guide",
                "snippet": "Parking near Bukit Jalil",
                "link": "https://example.com/parking",
            },
            {
                "position": 3,
                "title": "Weather in Kuala Lumpur",
                "snippet": "Rain expected",
                "link": "https://example.com/weather",
            },
        ],
        "ai_overview": {"text_blocks": [{"type": "paragraph", "snippet": "Two events that night."}]},
    }


class TestHelpers:
    """Test snippet parsing and scoring."""

    def test_format_search_date(self):
        assert format_search_date("2025-10-09T18:00:00+00:00") == "9 October 2025"
        assert format_search_date("soon") == "soon"

    def test_extract_date(self):
        assert extract_date_from_snippet("Happening October 9, 2025 downtown") == "October 9, 2025"
        assert extract_date_from_snippet("Held on 2025-10-09") == "2025-10-09"
        assert extract_date_from_snippet(None) is None

    def test_extract_location(self):
        assert extract_location_from_snippet("Live at Axiata Arena tonight") == "Axiata Arena"
        assert extract_location_from_snippet("no place here") is None

    def test_relevance_is_capped(self, serp_payload, event_data):
        """Every signal matching still scores at most 1.0."""
        relevance = calculate_relevance_score(serp_payload["organic_results"][0], event_data)
        assert relevance["score"] == 1.0
        assert relevance["matched_keywords"][:3] == ["venue", "event_name", "date"]
        assert "has_date" in relevance["matched_keywords"]

    def test_relevance_venue_only(self, serp_payload, event_data):
        relevance = calculate_relevance_score(serp_payload["organic_results"][1], event_data)
        assert relevance == {"score": 0.4, "matched_keywords": ["venue"]}


class TestTransform:
    """Test payload normalisation."""

    def test_filters_and_summarises(self, serp_payload, event_data):
        """Results under the relevance floor are dropped."""
        nearby = transform_serp_response(serp_payload, event_data, "nearby event")

        titles = [result["title"] for result in nearby["results"]]
        assert "Weather in Kuala Lumpur" not in titles
        assert len(titles) == 2
        assert nearby["results"][0]["is_highly_relevant"] is True
        assert nearby["results"][1]["is_highly_relevant"] is False

        summary = nearby["summary"]
        assert summary["highly_relevant_count"] == 1
        assert summary["data_quality"] == "medium"
        assert summary["display_suggestion"] == "show_ai_overview"
        assert summary["has_ai_overview"] is True
        assert nearby["serp_metadata"]["search_id"] == "search-1"
        assert nearby["serp_metadata"]["organic_results_count"] == 3

    def test_event_results(self, event_data):
        nearby = transform_serp_response({
            "events_results": [{
                "title": "Jazz Night",
                "date": {"start_date": "Oct 9", "when": "Thu, 8 PM"},
                "address": ["Axiata Arena", "Kuala Lumpur"],
                "ticket_info": [{"source": "TicketHub", "link": "https://tickets.example.com/jazz"}],
            }],
        }, event_data, "q")

        event = nearby["results"][0]
        assert event["type"] == "event_result"
        assert event["location"] == "Axiata Arena, Kuala Lumpur"
        assert event["url"] == "https://tickets.example.com/jazz"
        assert event["source"] == "TicketHub"
        assert nearby["summary"]["display_suggestion"] == "show_event_cards"

    def test_event_result_with_plain_date(self, event_data):
        nearby = transform_serp_response({"events_results": [{"title": "x", "date": "Oct 9"}]}, event_data, "q")
        assert nearby["results"][0]["date"] == "Oct 9"
        assert nearby["results"][0]["title"] == "x"

    def test_empty(self, event_data):
        nearby = transform_serp_response({}, event_data, "q")
        assert nearby["summary"]["data_quality"] == "none"
        assert nearby["summary"]["display_suggestion"] == "show_no_results"


class TestSearchNearbyEvents:
    """Test the search flow with the HTTP layer mocked."""

    @pytest.mark.asyncio
    async def test_search(self, eventai_config, event_data, serp_payload):
        service = SerpService(eventai_config)
        with patch.object(service, "_get", new=AsyncMock(return_value=serp_payload)) as mock_get:
            nearby = await service.search_nearby_events(event_data)

        params = mock_get.call_args.args[0]
        assert params["q"] == "nearby event at Bukit Jalil National Stadium on 9 October 2025"
        assert params["location"] == eventai_config.serp_location
        mock_get.assert_awaited_once()
        assert nearby["serp_metadata"]["success"] is True

    @pytest.mark.asyncio
    async def test_alternative_query_supplies_overview(self, eventai_config, event_data):
        """An empty overview triggers a second, reworded query."""
        service = SerpService(eventai_config)
        responses = [
            {"organic_results": []},
            {"ai_overview": {"text_blocks": [{"snippet": "A fun run is on."}]}},
        ]
        with patch.object(service, "_get", new=AsyncMock(side_effect=responses)) as mock_get:
            nearby = await service.search_nearby_events(event_data)

        assert mock_get.await_count == 2
        assert mock_get.call_args.args[0]["q"].startswith("what events happening at")
        assert nearby["ai_overview"]["text_blocks_count"] == 1

    @pytest.mark.asyncio
    async def test_page_token_fetches_full_overview(self, eventai_config, event_data):
        service = SerpService(eventai_config)
        responses = [
            {"ai_overview": {"page_token": "tok-1"}},
            {"text_blocks": [{"snippet": "Full overview"}], "references": []},
        ]
        with patch.object(service, "_get", new=AsyncMock(side_effect=responses)) as mock_get:
            nearby = await service.search_nearby_events(event_data)

        assert mock_get.call_args.args[0] == {"engine": "google_ai_overview", "page_token": "tok-1"}
        assert nearby["ai_overview"]["text_blocks"] == [{"snippet": "Full overview"}]

    @pytest.mark.asyncio
    async def test_missing_api_key(self, eventai_config, event_data):
        """Without a key the search returns an error-shaped result."""
        service = SerpService(eventai_config.model_copy(update={"serp_api_key": None}))

        nearby = await service.search_nearby_events(event_data)

        assert "SERP_API_KEY" in nearby["error"]
        assert nearby["results"] == []
        assert nearby["summary"]["data_quality"] == "none"
        assert nearby["serp_metadata"]["success"] is False

    @pytest.mark.asyncio
    async def test_http_failure(self, eventai_config, event_data):
        service = SerpService(eventai_config)
        with patch.object(service, "_get", new=AsyncMock(side_effect=httpx.ConnectError("boom"))):
            nearby = await service.search_nearby_events(event_data)

        assert nearby["error"] == "boom"
        assert nearby["summary"]["display_suggestion"] == "show_no_results"

    @pytest.mark.asyncio
    async def test_http_error_hides_api_key(self, eventai_config, event_data):
        """Status errors echo the request URL; the key never reaches the result."""
        service = SerpService(eventai_config)
        request = httpx.Request("GET", "https://serpapi.com/search.json?api_key=test_serp_key&q=x")
        error = httpx.HTTPStatusError(
            "Client error '401 Unauthorized' for url 'https://serpapi.com/search.json?api_key=test_serp_key&q=x'",
            request=request,
            response=httpx.Response(401, request=request),
        )
        with patch.object(service, "_get", new=AsyncMock(side_effect=error)):
            nearby = await service.search_nearby_events(event_data)

        assert "test_serp_key" not in nearby["error"]
        assert "api_key=***" in nearby["serp_metadata"]["error_message"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, []])
    async def test_non_dict_payload(self, eventai_config, event_data, payload):
        """A body that is not a JSON object degrades to the error result."""
        service = SerpService(eventai_config)
        with patch.object(service, "_get", new=AsyncMock(return_value=payload)):
            nearby = await service.search_nearby_events(event_data)

        assert nearby["results"] == []
        assert nearby["serp_metadata"]["success"] is False
        assert nearby["error"]

    @pytest.mark.asyncio
    async def test_get_rejects_non_object_body(self, eventai_config, event_data):
        service = SerpService(eventai_config)
        response = MagicMock()
        response.json.return_value = ["not", "an", "object"]
        client = AsyncMock()
        client.get.return_value = response

        with patch("eventai.services.serp_service.httpx.AsyncClient") as patched:
            patched.return_value.__aenter__.return_value = client
            nearby = await service.search_nearby_events(event_data)

        assert nearby["error"] == "Unexpected SerpAPI response: list"
        assert nearby["summary"]["display_suggestion"] == "show_no_results"

    @pytest.mark.asyncio
    async def test_api_error_field(self, eventai_config, event_data):
        service = SerpService(eventai_config)
        with patch.object(service, "_get", new=AsyncMock(return_value={"error": "Invalid API key."})):
            nearby = await service.search_nearby_events(event_data)
        assert nearby["error"] == "Invalid API key."

    @pytest.mark.asyncio
    async def test_health_check_unconfigured(self, eventai_config):
        service = SerpService(eventai_config.model_copy(update={"serp_api_key": None}))
        health = await service.health_check()
        assert health["healthy"] is False
        assert health["configured"] is False
