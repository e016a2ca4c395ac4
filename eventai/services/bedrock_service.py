"""
Generative model access through AWS Bedrock.

Both public operations are fail-soft: a model or parsing failure is logged
and turned into a well-formed fallback payload instead of an exception.
"""

import asyncio
import copy
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
import structlog

from eventai.models.config import EventAIConfig
from eventai.services.prompts import (
    MISSING_FORECAST_RECOMMENDATIONS,
    build_popularity_prompt,
    build_recommendation_prompt,
)


logger = structlog.get_logger(__name__)

POPULARITY_LEVELS = ("LOW", "MEDIUM", "HIGH", "VERY_HIGH")
INVALID_RECOMMENDATION_TEXT = "AI response invalid, no recommendations available"

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_json(text: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of free model text.

    Tries the whole (fence-stripped) text first, then the span between the
    first ``{`` and the last ``}``.

    Raises:
        ValueError: no JSON object could be parsed
    """
    cleaned = _FENCE.sub("", (text or "").strip()).strip()
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            parsed = json.loads(cleaned[start:end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    raise ValueError("No JSON object found in model response")


def _as_list(value: Any) -> list:
    if isinstance(value, list):
        return value
    if value in (None, ""):
        return []
    return [value]


class BedrockService:
    """Thin wrapper over the ``bedrock-runtime`` client."""

    def __init__(self, config: EventAIConfig, client: Optional[Any] = None):
        self.model_id = config.bedrock_model_id
        self.client = client or boto3.client(
            "bedrock-runtime", **config.aws_client_kwargs(config.bedrock_region)
        )
        self.logger = logger.bind(component="bedrock_service")

    def _invoke_sync(self, prompt: str) -> str:
        body = {
            "messages": [{"role": "user", "content": [{"text": prompt}]}],
            "inferenceConfig": {"temperature": 0.7, "topP": 0.9},
        }
        response = self.client.invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body),
        )
        payload = json.loads(response["body"].read())
        content = ((payload.get("output") or {}).get("message") or {}).get("content") or [{}]
        return content[0].get("text") or ""

    async def invoke_model(self, prompt: str) -> str:
        """Send one user prompt and return the model's text output."""
        return await asyncio.to_thread(self._invoke_sync, prompt)

    async def get_incident_recommendation(self, forecast_result: Any, event_info: Dict[str, Any]) -> Dict[str, Any]:
        prompt = build_recommendation_prompt(forecast_result, event_info)
        if prompt is None:
            self.logger.warning("Skipping recommendations, forecast missing")
            return copy.deepcopy(MISSING_FORECAST_RECOMMENDATIONS)

        try:
            text = await self.invoke_model(prompt)
        except Exception as e:
            self.logger.error("Bedrock recommendation call failed", error=str(e))
            return {
                "gates": [],
                "generalRecommendations": [],
                "error": "Failed to get AI recommendations",
                "details": str(e),
            }

        try:
            recommendation = extract_json(text)
        except ValueError as e:
            self.logger.warning("Model returned invalid JSON for recommendations", error=str(e))
            return {
                "gates": [],
                "generalRecommendations": [INVALID_RECOMMENDATION_TEXT],
                "rawText": text,
                "note": str(e),
            }

        recommendation["gates"] = _as_list(recommendation.get("gates"))
        recommendation["generalRecommendations"] = _as_list(recommendation.get("generalRecommendations"))
        return recommendation

    def _popularity_fallback(self, note: str, raw_text: Optional[str] = None) -> Dict[str, Any]:
        result = {
            "popularityScore": 0,
            "popularityLevel": "UNKNOWN",
            "expectedCrowdImpact": "Unknown",
            "keyFactors": [],
            "competingEvents": [],
            "suggestions": [],
            "summary": "Popularity analysis unavailable",
            "note": note,
            "analyzedAt": datetime.now(timezone.utc).isoformat(),
            "modelId": self.model_id,
        }
        if raw_text is not None:
            result["rawText"] = raw_text
        return result

    def _normalise_popularity(self, parsed: Dict[str, Any]) -> Dict[str, Any]:
        try:
            score = int(round(float(parsed.get("popularityScore", 0))))
        except (TypeError, ValueError):
            score = 0
        level = str(parsed.get("popularityLevel") or "").upper().replace(" ", "_")

        return {
            "popularityScore": max(0, min(100, score)),
            "popularityLevel": level if level in POPULARITY_LEVELS else "UNKNOWN",
            "expectedCrowdImpact": parsed.get("expectedCrowdImpact") or "Unknown",
            "keyFactors": _as_list(parsed.get("keyFactors")),
            "competingEvents": _as_list(parsed.get("competingEvents")),
            "suggestions": _as_list(parsed.get("suggestions")),
            "summary": parsed.get("summary") or "",
            "analyzedAt": datetime.now(timezone.utc).isoformat(),
            "modelId": self.model_id,
        }

    async def analyze_popularity(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Estimate event popularity; always returns the full result shape."""
        prompt = build_popularity_prompt(data)

        try:
            text = await self.invoke_model(prompt)
        except Exception as e:
            self.logger.error("Bedrock popularity call failed", error=str(e), event_name=data.get("name"))
            result = self._popularity_fallback("Model call failed")
            result["error"] = "Failed to analyze event popularity"
            result["details"] = str(e)
            return result

        try:
            parsed = extract_json(text)
        except ValueError:
            self.logger.warning("Model returned invalid JSON for popularity", event_name=data.get("name"))
            return self._popularity_fallback("AI response could not be parsed", raw_text=text)

        result = self._normalise_popularity(parsed)
        self.logger.info("Popularity analyzed", event_name=data.get("name"),
                         score=result["popularityScore"], level=result["popularityLevel"])
        return result
