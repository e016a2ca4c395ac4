"""
Text analytics through AWS Comprehend, plus heuristic context building for attachments.

``analyze_text`` fans four Comprehend calls out concurrently and tolerates any
subset of them failing. ``analyze_event_file`` layers regex extraction and
keyword scoring on top to produce an AI-ready context document.
"""

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
import structlog

from eventai.models.config import EventAIConfig
from eventai.services.file_processor import keyword_phrases


logger = structlog.get_logger(__name__)

MAX_TEXT_LENGTH = 5000
SUMMARY_CONFIDENCE = 0.8
MAX_KEYWORDS = 50

EVENT_KEYWORDS = (
    "event", "venue", "attendee", "ticket", "schedule", "program",
    "speaker", "performance", "crowd", "capacity", "logistics",
    "catering", "security", "stage", "booth", "registration",
    "conference", "concert", "festival", "meeting", "ceremony",
)

LOCATION_KEYWORDS = ("room", "hall", "stage", "area", "venue", "building", "floor",
                     "auditorium", "ballroom", "conference")
PEOPLE_KEYWORDS = ("manager", "team", "host", "speaker", "coordinator", "staff",
                   "volunteer", "organizer", "presenter", "moderator")

CONCEPT_KEYWORDS = {
    "eventManagement": ("event", "conference", "meeting", "seminar", "workshop", "ceremony",
                        "celebration", "festival", "concert"),
    "logistics": ("venue", "catering", "transportation", "accommodation", "setup", "equipment",
                  "schedule", "timeline"),
    "communication": ("announcement", "invitation", "notification", "marketing", "promotion",
                      "social media", "website"),
    "safety": ("security", "safety", "emergency", "medical", "evacuation", "protocol", "insurance"),
    "technology": ("system", "software", "platform", "digital", "online", "virtual", "streaming",
                   "registration"),
    "finance": ("budget", "cost", "payment", "invoice", "expense", "revenue", "pricing", "fee"),
    "marketing": ("promotion", "advertising", "branding", "social media", "press release", "publicity"),
}

SCHEDULE_INDICATORS = ("time", "activity", "location", "responsible", "notes", "schedule", "event")

_SECTION = re.compile(r"^[A-Z][A-Z\s]{3,}$", re.MULTILINE)
_BULLET = re.compile(r"^\s*[-*•]\s+.+$", re.MULTILINE)
_NUMBERED = re.compile(r"^\s*\d+[.)]\s+.+$", re.MULTILINE)
_TAB_ROW = re.compile(r"^.+\t.+$", re.MULTILINE)
_CSV_RECORD = re.compile(r"^Record \d+:$", re.MULTILINE)
_DATE = re.compile(
    r"\b\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}\b"
    r"|\b\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}\b"
    r"|\b[A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4}\b"
)
_TIME = re.compile(r"\b\d{1,2}:\d{2}(?:\s*[AaPp][Mm])?\b")
_SCHEDULE_ITEM = re.compile(r"\d{1,2}:\d{2}[^,\n]*(?:,|\n)")
_NUMBER = re.compile(r"\b\d{1,3}(?:,\d{3})*(?:\.\d+)?\b")
_URL = re.compile(r"https?://\S+")
_EMAIL = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_ACTIONS = (
    re.compile(r"(?:need to|must|should|required to|action:)\s+[^.!?]+", re.IGNORECASE),
    re.compile(r"(?:todo|to do|action item):\s*[^.!?]+", re.IGNORECASE),
    re.compile(r"(?:follow up|follow-up):\s*[^.!?]+", re.IGNORECASE),
)


def _unique(items) -> List[Any]:
    return list(dict.fromkeys(items))


def _group_by_type(entities: List[Dict[str, Any]], min_score: float) -> Dict[str, List[str]]:
    groups: Dict[str, List[str]] = {}
    for entity in entities:
        if entity["score"] > min_score:
            groups.setdefault(entity["type"], []).append(entity["text"])
    return groups


class ComprehendService:
    """Sentiment, entity, key phrase and language detection with fail-soft fan-out."""

    def __init__(self, config: EventAIConfig, client: Optional[Any] = None):
        self.client = client or boto3.client("comprehend", **config.aws_client_kwargs())
        self.logger = logger.bind(component="comprehend_service")

    # Comprehend calls

    async def detect_sentiment(self, text: str, language_code: str = "en") -> Dict[str, Any]:
        response = await asyncio.to_thread(
            self.client.detect_sentiment, Text=text, LanguageCode=language_code
        )
        scores = response.get("SentimentScore") or {}
        return {
            "sentiment": response["Sentiment"],
            "sentimentScore": scores,
            "confidence": max(scores.values()) if scores else 0.0,
        }

    async def detect_entities(self, text: str, language_code: str = "en") -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(
            self.client.detect_entities, Text=text, LanguageCode=language_code
        )
        return [
            {
                "text": entity["Text"],
                "type": entity["Type"],
                "score": entity["Score"],
                "beginOffset": entity.get("BeginOffset"),
                "endOffset": entity.get("EndOffset"),
            }
            for entity in response.get("Entities", [])
        ]

    async def detect_key_phrases(self, text: str, language_code: str = "en") -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(
            self.client.detect_key_phrases, Text=text, LanguageCode=language_code
        )
        return [
            {
                "text": phrase["Text"],
                "score": phrase["Score"],
                "beginOffset": phrase.get("BeginOffset"),
                "endOffset": phrase.get("EndOffset"),
            }
            for phrase in response.get("KeyPhrases", [])
        ]

    async def detect_dominant_language(self, text: str) -> Optional[Dict[str, Any]]:
        response = await asyncio.to_thread(self.client.detect_dominant_language, Text=text)
        languages = response.get("Languages") or []
        return max(languages, key=lambda language: language.get("Score", 0)) if languages else None

    async def analyze_text(self, text: str, language_code: str = "en") -> Dict[str, Any]:
        """
        Run the four detections concurrently.

        A failed detection is logged and replaced by its empty value (None for
        sentiment and language, [] for entities and key phrases); the others
        are still returned.
        """
        truncated = text[:MAX_TEXT_LENGTH]
        if len(text) > MAX_TEXT_LENGTH:
            self.logger.warning("Text truncated for analysis",
                                original_length=len(text), truncated_length=MAX_TEXT_LENGTH)

        operations = ("sentiment", "entities", "keyPhrases", "language")
        defaults = (None, [], [], None)
        results = await asyncio.gather(
            self.detect_sentiment(truncated, language_code),
            self.detect_entities(truncated, language_code),
            self.detect_key_phrases(truncated, language_code),
            self.detect_dominant_language(truncated),
            return_exceptions=True,
        )

        values = []
        for operation, default, result in zip(operations, defaults, results):
            if isinstance(result, Exception):
                self.logger.warning("Comprehend operation failed", operation=operation, error=str(result))
                values.append(default)
            else:
                values.append(result)
        sentiment, entities, key_phrases, language = values

        analysis = {
            "originalTextLength": len(text),
            "analyzedTextLength": len(truncated),
            "sentiment": sentiment,
            "entities": entities,
            "keyPhrases": key_phrases,
            "detectedLanguage": language,
            "summary": self.generate_summary(sentiment, entities, key_phrases),
            "analyzedAt": datetime.now(timezone.utc).isoformat(),
        }

        self.logger.info("Text analysis completed",
                         sentiment=bool(sentiment), entities=len(entities),
                         key_phrases=len(key_phrases),
                         language=(language or {}).get("LanguageCode"))
        return analysis

    def generate_summary(self, sentiment: Optional[Dict[str, Any]],
                         entities: List[Dict[str, Any]], key_phrases: List[Dict[str, Any]]) -> str:
        parts = []
        if sentiment:
            parts.append(
                f"The content has a {sentiment['sentiment'].lower()} sentiment "
                f"({sentiment['confidence'] * 100:.1f}% confidence)."
            )

        top_entities = [f"{e['text']} ({e['type']})" for e in entities if e["score"] > SUMMARY_CONFIDENCE][:5]
        if top_entities:
            parts.append(f"Key entities mentioned: {', '.join(top_entities)}.")

        top_phrases = [p["text"] for p in key_phrases if p["score"] > SUMMARY_CONFIDENCE][:3]
        if top_phrases:
            parts.append(f"Important topics: {', '.join(top_phrases)}.")

        return " ".join(parts) or "No significant insights detected from the content."

    # Attachment context

    async def analyze_event_file(self, content: str, file_name: str, file_type: str) -> Dict[str, Any]:
        self.logger.info("Building AI context for file", file_name=file_name, file_type=file_type)

        analysis = await self.analyze_text(content)
        structured = self.extract_structured_content(content, file_name)

        context = {
            "fileName": file_name,
            "fileType": file_type,
            "contentLength": len(content),
            **analysis,
            "structuredContent": structured,
            "eventRelevance": self.assess_event_relevance(analysis),
            "keyInformation": self.extract_key_information(analysis, structured),
            "contextSummary": self.generate_ai_context_summary(analysis, content, file_name, structured),
            "actionableInsights": self.generate_actionable_insights(analysis, structured),
            "relatedConcepts": self.identify_related_concepts(analysis),
            "aiReadyContext": self.format_for_ai_agent(analysis, content, file_name, structured),
            "searchableKeywords": self.generate_searchable_keywords(analysis, content, structured),
            "processedAt": datetime.now(timezone.utc).isoformat(),
        }

        self.logger.info("AI context built", file_name=file_name,
                         relevance=context["eventRelevance"]["score"],
                         keywords=len(context["searchableKeywords"]))
        return context

    def assess_event_relevance(self, analysis: Dict[str, Any]) -> Dict[str, Any]:
        score = 0.0
        matched: List[str] = []

        for entity in analysis.get("entities") or []:
            text = entity["text"].lower()
            if any(keyword in text or text in keyword for keyword in EVENT_KEYWORDS):
                score += entity["score"] * 0.3
                matched.append(entity["text"])

        for phrase in analysis.get("keyPhrases") or []:
            text = phrase["text"].lower()
            if any(keyword in text for keyword in EVENT_KEYWORDS):
                score += phrase["score"] * 0.2
                matched.append(phrase["text"])

        return {
            "score": min(score, 1.0),
            "level": "HIGH" if score > 0.7 else "MEDIUM" if score > 0.4 else "LOW",
            "matchedKeywords": _unique(matched),
        }

    def extract_structured_content(self, content: str, file_name: str = "") -> Dict[str, Any]:
        structured: Dict[str, Any] = {"csvData": None}

        if "[CSV FILE:" in content or file_name.lower().endswith(".csv"):
            structured["csvData"] = self.extract_csv_structure(content)

        structured["sections"] = [match.strip() for match in _SECTION.findall(content)][:10]
        structured["lists"] = (_BULLET.findall(content) + _NUMBERED.findall(content))[:20]
        structured["tables"] = (_TAB_ROW.findall(content) + _CSV_RECORD.findall(content))[:20]
        structured["dates"] = _unique(_DATE.findall(content))[:10]
        structured["timeSlots"] = _unique(_TIME.findall(content))[:20]
        structured["scheduleItems"] = [item.strip(",\n ") for item in _SCHEDULE_ITEM.findall(content)][:15]
        structured["locations"] = keyword_phrases(content, LOCATION_KEYWORDS)[:10]
        structured["people"] = keyword_phrases(content, PEOPLE_KEYWORDS)[:10]
        structured["numbers"] = _unique(_NUMBER.findall(content))[:15]
        structured["urls"] = _unique(_URL.findall(content))[:5]
        structured["emails"] = _unique(_EMAIL.findall(content))[:10]
        return structured

    def extract_csv_structure(self, content: str) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "hasHeaders": False,
            "columnCount": 0,
            "rowCount": 0,
            "headers": [],
            "sampleData": [],
        }

        header_match = re.search(r"Column Headers: ([^\n]+)", content)
        if header_match:
            info["hasHeaders"] = True
            info["headers"] = [header.strip() for header in header_match.group(1).split(", ")]
            info["columnCount"] = len(info["headers"])

        row_match = re.search(r"Rows: (\d+)", content)
        if row_match:
            info["rowCount"] = int(row_match.group(1))

        records = re.findall(r"Record \d+:([\s\S]*?)(?=Record \d+:|=== CONTENT ANALYSIS ===|$)", content)
        for record in records[:3]:
            sample = {}
            for line in record.splitlines():
                key, sep, value = line.partition(":")
                if sep and key.strip():
                    sample[key.strip()] = value.strip()
            info["sampleData"].append(sample)

        return info

    def extract_key_information(self, analysis: Dict[str, Any], structured: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = [
            {"type": "entity", "category": e["type"], "text": e["text"],
             "confidence": e["score"], "importance": "high"}
            for e in analysis.get("entities") or [] if e["score"] > 0.8
        ]
        items += [
            {"type": "key_phrase", "category": "topic", "text": p["text"],
             "confidence": p["score"], "importance": "medium"}
            for p in [p for p in analysis.get("keyPhrases") or [] if p["score"] > 0.8][:10]
        ]
        items += [
            {"type": "date", "category": "temporal", "text": date, "confidence": 1.0, "importance": "high"}
            for date in structured["dates"]
        ]
        items += [
            {"type": "contact", "category": "email", "text": email, "confidence": 1.0, "importance": "medium"}
            for email in structured["emails"]
        ]
        return items

    def generate_ai_context_summary(self, analysis: Dict[str, Any], content: str, file_name: str,
                                    structured: Dict[str, Any]) -> str:
        language = (analysis.get("detectedLanguage") or {}).get("LanguageCode", "unknown")
        lines = [
            f"DOCUMENT: {file_name}",
            "",
            "CONTENT OVERVIEW:",
            f"- Length: {len(content)} characters",
            f"- Language: {language}",
        ]
        if analysis.get("sentiment"):
            lines.append(f"- Overall tone: {analysis['sentiment']['sentiment'].lower()}")

        topics = [p["text"] for p in analysis.get("keyPhrases") or [] if p["score"] > 0.7][:5]
        if topics:
            lines.append(f"- Main topics: {', '.join(topics)}")

        for entity_type, texts in _group_by_type(analysis.get("entities") or [], 0.8).items():
            lines.append(f"- {entity_type.lower()}s mentioned: {', '.join(texts[:3])}")

        relevance = self.assess_event_relevance(analysis)
        lines.append(f"- Event relevance: {relevance['level']} ({relevance['score'] * 100:.0f}%)")

        if structured["dates"]:
            lines.append(f"- Important dates: {', '.join(structured['dates'][:3])}")
        if structured["emails"]:
            lines.append(f"- Contact emails: {', '.join(structured['emails'][:2])}")

        return "\n".join(lines) + "\n\n"

    def generate_actionable_insights(self, analysis: Dict[str, Any], structured: Dict[str, Any]) -> List[Dict[str, Any]]:
        insights: List[Dict[str, Any]] = []

        sentiment = (analysis.get("sentiment") or {}).get("sentiment")
        if sentiment == "NEGATIVE":
            insights.append({
                "type": "attention_required", "priority": "high", "category": "risk_management",
                "message": "Document contains negative sentiment, review for potential issues or concerns",
            })
        elif sentiment == "POSITIVE":
            insights.append({
                "type": "positive_indicator", "priority": "medium", "category": "quality_indicator",
                "message": "Document has positive tone, may indicate successful planning or good feedback",
            })

        by_type: Dict[str, List[str]] = {}
        for entity in analysis.get("entities") or []:
            by_type.setdefault(entity["type"], []).append(entity["text"])

        entity_insights = (
            ("PERSON", "stakeholder_identification", "medium", "stakeholder_management",
             "people identified, consider adding to event contact list", 5),
            ("LOCATION", "location_reference", "high", "venue_management",
             "locations mentioned, verify venue details and logistics", 3),
            ("DATE", "schedule_reference", "high", "schedule_management",
             "dates mentioned, cross-reference with event timeline", 3),
            ("ORGANIZATION", "vendor_partner_identification", "medium", "vendor_management",
             "organizations mentioned, potential vendors or partners", 3),
        )
        for entity_type, insight_type, priority, category, message, limit in entity_insights:
            texts = by_type.get(entity_type)
            if texts:
                insights.append({
                    "type": insight_type, "priority": priority, "category": category,
                    "message": f"{len(texts)} {message}", "details": texts[:limit],
                })

        if len(structured["lists"]) > 5:
            insights.append({
                "type": "structured_information", "priority": "low", "category": "information_quality",
                "message": "Document contains multiple lists, well-organized information for planning",
            })
        if structured["tables"]:
            insights.append({
                "type": "tabular_data", "priority": "medium", "category": "data_availability",
                "message": f"Document contains {len(structured['tables'])} tables, structured data for analysis",
            })

        return insights

    def identify_related_concepts(self, analysis: Dict[str, Any]) -> Dict[str, List[str]]:
        corpus = " ".join(
            [p["text"].lower() for p in analysis.get("keyPhrases") or []]
            + [e["text"].lower() for e in analysis.get("entities") or []]
        )
        return {
            concept: [keyword for keyword in keywords if keyword in corpus]
            for concept, keywords in CONCEPT_KEYWORDS.items()
        }

    def format_for_ai_agent(self, analysis: Dict[str, Any], content: str, file_name: str,
                            structured: Dict[str, Any]) -> str:
        """Plain-text briefing an agent can answer common questions from."""
        language = (analysis.get("detectedLanguage") or {}).get("LanguageCode", "unknown")
        sentiment = analysis.get("sentiment")
        relevance = self.assess_event_relevance(analysis)
        csv_data = structured["csvData"]

        lines = [
            f"=== AI AGENT CONTEXT FOR: {file_name} ===",
            "",
            "QUICK FACTS:",
            f"• Document type: {self.infer_document_type(content, file_name)}",
            f"• Content length: {len(content)} characters",
            f"• Language: {language}",
        ]
        if sentiment:
            lines.append(f"• Tone: {sentiment['sentiment']} ({sentiment['confidence'] * 100:.0f}% confidence)")
        lines += [f"• Event relevance: {relevance['level']}", "", "KEY INFORMATION FOR AI QUERIES:"]

        for entity_type, texts in _group_by_type(analysis.get("entities") or [], 0.7).items():
            lines.append(f"• {entity_type}: {', '.join(texts)}")

        topics = [p["text"] for p in analysis.get("keyPhrases") or [] if p["score"] > 0.8][:8]
        if topics:
            lines.append(f"• Key topics: {', '.join(topics)}")

        if csv_data:
            lines.append(f"• CSV structure: {csv_data['rowCount']} rows, {csv_data['columnCount']} columns")
            if csv_data["headers"]:
                lines.append(f"• Data fields: {', '.join(csv_data['headers'])}")

        optional = (
            ("Time slots", structured["timeSlots"], None, ", "),
            ("Locations mentioned", structured["locations"], 5, ", "),
            ("People/Roles", structured["people"], 5, ", "),
            ("Important dates", structured["dates"], None, ", "),
            ("Schedule items", structured["scheduleItems"], 3, "; "),
            ("Contact information", structured["emails"], None, ", "),
            ("Referenced URLs", structured["urls"], None, ", "),
        )
        for label, values, limit, separator in optional:
            if values:
                lines.append(f"• {label}: {separator.join(values[:limit] if limit else values)}")

        lines += [
            "",
            "CONTEXT FOR COMMON QUERIES:",
            f'• "What is this document about?": {self.generate_document_summary(analysis, structured)}',
            f'• "Who are the key people?": {self.extract_key_people(analysis, structured)}',
            f'• "What are the important dates?": {", ".join(structured["dates"]) or "No specific dates found"}',
            f'• "What times are mentioned?": {", ".join(structured["timeSlots"]) or "No specific times found"}',
            f'• "What locations are mentioned?": {self.extract_locations(analysis, structured)}',
            f'• "What actions are needed?": {self.extract_action_items(content)}',
        ]

        if csv_data:
            slots = structured["timeSlots"]
            records = max(csv_data["rowCount"] - 1, 0)
            first = slots[0] if slots else "start"
            last = slots[-1] if slots else "end"
            lines.append(f'• "What is the schedule?": Event schedule with {records} activities from {first} to {last}')
            lines.append(f'• "What data is available?": CSV contains {", ".join(csv_data["headers"])} for {records} records')

        return "\n".join(lines) + "\n\n"

    def generate_searchable_keywords(self, analysis: Dict[str, Any], content: str,
                                     structured: Dict[str, Any]) -> List[str]:
        keywords: List[str] = []

        terms = [e["text"] for e in analysis.get("entities") or [] if e["score"] > 0.7]
        terms += [p["text"] for p in analysis.get("keyPhrases") or [] if p["score"] > 0.7]
        for term in terms:
            lowered = term.lower()
            keywords.append(lowered)
            keywords.extend(word for word in lowered.split() if len(word) > 2)

        keywords.extend(structured["dates"])
        keywords.extend(structured["emails"])
        keywords.append(self.infer_document_type(content, ""))

        return _unique(keywords)[:MAX_KEYWORDS]

    def infer_document_type(self, content: str, file_name: str) -> str:
        extension = file_name.lower().rsplit(".", 1)[-1] if "." in file_name else ""
        by_extension = {
            "pdf": "PDF document",
            "xlsx": "Excel spreadsheet",
            "xls": "Excel spreadsheet",
            "csv": "CSV data file",
            "docx": "Word document",
            "jpg": "image with text",
            "jpeg": "image with text",
            "png": "image with text",
        }
        if extension in by_extension:
            return by_extension[extension]

        if "[CSV FILE:" in content:
            return "CSV event schedule"
        if "WORKSHEET" in content or "\t" in content:
            return "structured data"
        return "text document"

    def generate_document_summary(self, analysis: Dict[str, Any], structured: Dict[str, Any]) -> str:
        csv_data = structured.get("csvData")
        if csv_data:
            headers = csv_data["headers"]
            records = max(csv_data["rowCount"] - 1, 0)
            if any(indicator in header.lower() for header in headers for indicator in SCHEDULE_INDICATORS):
                return f"Event schedule with {records} activities covering times, locations, and responsibilities"
            return f"Structured data file with {records} records containing {', '.join(headers)}"

        if analysis.get("keyPhrases"):
            top = [p["text"] for p in analysis["keyPhrases"] if p["score"] > 0.8][:3]
            return f"Document focuses on: {', '.join(top)}"
        return "Document content analysis available"

    def extract_key_people(self, analysis: Dict[str, Any], structured: Dict[str, Any]) -> str:
        people = [e["text"] for e in analysis.get("entities") or [] if e["type"] == "PERSON" and e["score"] > 0.8]
        people += structured.get("people", [])[:3]
        unique = _unique(people)[:5]
        return ", ".join(unique) if unique else "No specific people identified"

    def extract_locations(self, analysis: Dict[str, Any], structured: Dict[str, Any]) -> str:
        places = [e["text"] for e in analysis.get("entities") or [] if e["type"] == "LOCATION" and e["score"] > 0.8]
        places += structured.get("locations", [])[:3]
        unique = _unique(places)[:5]
        return ", ".join(unique) if unique else "No specific locations identified"

    def extract_action_items(self, content: str) -> str:
        actions: List[str] = []
        for pattern in _ACTIONS:
            actions.extend(match.strip() for match in pattern.findall(content)[:3])
        return "; ".join(actions) if actions else "No specific action items identified"
