"""Tests for Comprehend fan-out and attachment context building."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from eventai.services.comprehend_service import MAX_TEXT_LENGTH, ComprehendService
from eventai.services.file_processor import FileProcessor


SCHEDULE_CSV = "Time,Activity,Location\n09:00,Registration,Main Hall\n10:00,Keynote,Stage A\n"


@pytest.fixture
def comprehend_client():
    client = MagicMock()
    client.detect_sentiment.return_value = {
        "Sentiment": "POSITIVE",
        "SentimentScore": {"Positive": 0.9, "Negative": 0.05, "Neutral": 0.04, "Mixed": 0.01},
    }
    client.detect_entities.return_value = {
        "Entities": [
            {"Text": "Main Hall", "Type": "LOCATION", "Score": 0.95, "BeginOffset": 0, "EndOffset": 9},
            {"Text": "Alice Tan", "Type": "PERSON", "Score": 0.5},
        ]
    }
    client.detect_key_phrases.return_value = {
        "KeyPhrases": [
            {"Text": "the keynote", "Score": 0.9},
            {"Text": "event registration", "Score": 0.85},
        ]
    }
    client.detect_dominant_language.return_value = {
        "Languages": [{"LanguageCode": "ms", "Score": 0.1}, {"LanguageCode": "en", "Score": 0.99}]
    }
    return client


@pytest.fixture
def comprehend_service(eventai_config, comprehend_client):
    return ComprehendService(eventai_config, client=comprehend_client)


class TestAnalyzeText:
    """Test the concurrent detection fan-out."""

    @pytest.mark.asyncio
    async def test_all_detections(self, comprehend_service):
        analysis = await comprehend_service.analyze_text("Registration opens in the Main Hall.")

        assert analysis["sentiment"]["sentiment"] == "POSITIVE"
        assert analysis["sentiment"]["confidence"] == 0.9
        assert [e["text"] for e in analysis["entities"]] == ["Main Hall", "Alice Tan"]
        assert analysis["detectedLanguage"]["LanguageCode"] == "en"
        assert analysis["summary"] == (
            "The content has a positive sentiment (90.0% confidence). "
            "Key entities mentioned: Main Hall (LOCATION). "
            "Important topics: the keynote, event registration."
        )

    @pytest.mark.asyncio
    async def test_one_failure_keeps_the_rest(self, comprehend_service, comprehend_client):
        """A failed detection becomes its empty value."""
        comprehend_client.detect_entities.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "DetectEntities")

        analysis = await comprehend_service.analyze_text("Registration opens in the Main Hall.")

        assert analysis["entities"] == []
        assert analysis["sentiment"]["sentiment"] == "POSITIVE"
        assert len(analysis["keyPhrases"]) == 2
        assert analysis["detectedLanguage"]["LanguageCode"] == "en"

    @pytest.mark.asyncio
    async def test_everything_fails(self, comprehend_service, comprehend_client):
        for name in ("detect_sentiment", "detect_entities", "detect_key_phrases", "detect_dominant_language"):
            getattr(comprehend_client, name).side_effect = RuntimeError("down")

        analysis = await comprehend_service.analyze_text("anything")

        assert analysis["sentiment"] is None
        assert analysis["detectedLanguage"] is None
        assert analysis["summary"] == "No significant insights detected from the content."

    @pytest.mark.asyncio
    async def test_truncates_long_text(self, comprehend_service, comprehend_client):
        text = "a" * (MAX_TEXT_LENGTH + 100)
        analysis = await comprehend_service.analyze_text(text)

        assert analysis["originalTextLength"] == MAX_TEXT_LENGTH + 100
        assert analysis["analyzedTextLength"] == MAX_TEXT_LENGTH
        assert len(comprehend_client.detect_sentiment.call_args.kwargs["Text"]) == MAX_TEXT_LENGTH


class TestEventFileContext:
    """Test the attachment context document."""

    @pytest.mark.asyncio
    async def test_csv_schedule(self, comprehend_service):
        content = FileProcessor().extract_csv_content(SCHEDULE_CSV, "schedule.csv")

        context = await comprehend_service.analyze_event_file(content, "schedule.csv", "text/csv")

        csv_data = context["structuredContent"]["csvData"]
        assert csv_data["headers"] == ["Time", "Activity", "Location"]
        assert csv_data["rowCount"] == 3
        assert csv_data["sampleData"][0] == {"Time": "09:00", "Activity": "Registration", "Location": "Main Hall"}

        assert context["fileName"] == "schedule.csv"
        assert context["eventRelevance"]["matchedKeywords"] == ["event registration"]
        assert context["eventRelevance"]["level"] == "LOW"
        assert "• CSV structure: 3 rows, 3 columns" in context["aiReadyContext"]
        assert "Event schedule with 2 activities from 09:00 to 10:00" in context["aiReadyContext"]
        assert "CSV event schedule" in context["searchableKeywords"]

    def test_structured_content(self, comprehend_service):
        content = (
            "AGENDA\n"
            "- Doors open at 18:30\n"
            "1. Contact ops@example.com before 12/10/2025\n"
            "Venue details: https://example.com/map\n"
        )
        structured = comprehend_service.extract_structured_content(content)

        assert structured["csvData"] is None
        assert structured["sections"] == ["AGENDA"]
        assert len(structured["lists"]) == 2
        assert structured["timeSlots"] == ["18:30"]
        assert structured["dates"] == ["12/10/2025"]
        assert structured["emails"] == ["ops@example.com"]
        assert structured["urls"] == ["https://example.com/map"]

    def test_actionable_insights(self, comprehend_service):
        analysis = {
            "sentiment": {"sentiment": "NEGATIVE", "confidence": 0.8},
            "entities": [{"text": "Stadium", "type": "LOCATION", "score": 0.9}],
            "keyPhrases": [],
        }
        structured = comprehend_service.extract_structured_content("plain text")

        insights = comprehend_service.generate_actionable_insights(analysis, structured)

        assert insights[0]["type"] == "attention_required"
        assert insights[1]["type"] == "location_reference"
        assert insights[1]["details"] == ["Stadium"]

    def test_action_items(self, comprehend_service):
        items = comprehend_service.extract_action_items("We need to book buses. TODO: print badges.")
        assert "need to book buses" in items
        assert "TODO: print badges" in items

    def test_related_concepts(self, comprehend_service):
        concepts = comprehend_service.identify_related_concepts({
            "keyPhrases": [{"text": "security budget", "score": 0.9}],
            "entities": [],
        })
        assert concepts["safety"] == ["security"]
        assert concepts["finance"] == ["budget"]
        assert concepts["logistics"] == []
