"""Prompt builders for the generative model."""

from typing import Any, Dict, List, Optional

CONGESTION_RATIO = 0.8

MISSING_FORECAST_RECOMMENDATIONS = {
    "gates": [],
    "generalRecommendations": [
        "Forecast data missing or invalid, cannot generate detailed recommendations"
    ],
}

RECOMMENDATION_RESPONSE_FORMAT = """{
  "gates": [
    {
      "gate": "Gate Name",
      "expectedCongestionTimes": ["HH:MM", ...],
      "recommendedActions": ["action1", "action2"],
      "possibleIncidents": ["incident1", "incident2"]
    }
  ],
  "generalRecommendations": ["Recommendation 1", "Recommendation 2"]
}"""

POPULARITY_RESPONSE_FORMAT = """{
  "popularityScore": 0-100,
  "popularityLevel": "LOW" | "MEDIUM" | "HIGH" | "VERY_HIGH",
  "expectedCrowdImpact": "short description of the expected crowd impact",
  "keyFactors": ["factor1", "factor2"],
  "competingEvents": ["event1", "event2"],
  "suggestions": ["suggestion1", "suggestion2"],
  "summary": "two or three sentence summary"
}"""


def extract_forecast(forecast_data: Any) -> Optional[Dict[str, Any]]:
    """Return the per-gate forecast from a generation result, or None."""
    if not isinstance(forecast_data, dict):
        return None
    result = forecast_data.get("forecastResult", forecast_data)
    forecast = result.get("forecast") if isinstance(result, dict) else None
    return forecast if isinstance(forecast, dict) and forecast else None


def _clock(timestamp: Optional[str]) -> str:
    # "YYYY-MM-DD HH:MM:SS" -> "HH:MM"
    if not timestamp:
        return ""
    time_part = str(timestamp).replace("T", " ").split(" ")[-1]
    return time_part[:5]


def congestion_times(gate_data: Dict[str, Any]) -> List[str]:
    """Times where the predicted crowd reaches the congestion share of capacity."""
    capacity = gate_data.get("capacity")
    if not isinstance(capacity, (int, float)) or isinstance(capacity, bool) or capacity <= 0:
        return []
    threshold = CONGESTION_RATIO * capacity
    return [
        _clock(frame.get("timestamp"))
        for frame in gate_data.get("timeFrames") or []
        if (frame.get("predicted") or 0) >= threshold
    ]


def build_recommendation_prompt(forecast_data: Any, event_info: Dict[str, Any]) -> Optional[str]:
    """Prompt asking for gate-level incident recommendations; None when there is no forecast."""
    forecast = extract_forecast(forecast_data)
    if forecast is None:
        return None

    gates = event_info.get("gates") or list(forecast)
    lines = []
    for gate, gate_data in forecast.items():
        times = congestion_times(gate_data)
        lines.append(
            f"Gate {gate} (Capacity: {gate_data.get('capacity')}):\n"
            f"- Expected congestion times: {', '.join(times) if times else 'None'}"
        )

    return f"""
You are an AI congestion advisor for event organizers.

Event Details:
- Gates: {', '.join(str(gate) for gate in gates)}
- Schedule: {event_info.get('schedule_start_time')} to {event_info.get('event_end_time')}
- Forecast Frequency: {event_info.get('freq')}
- Exit Estimation Method: {event_info.get('method_exits')}

Forecast Summary (per gate):
{chr(10).join(lines)}

STRICTLY RESPOND ONLY IN JSON with this structure:

{RECOMMENDATION_RESPONSE_FORMAT}

IMPORTANT:
- Always include gate-specific recommendations even if congestion times are empty.
- Only output valid JSON. No extra explanations.
- General recommendations should cover overall event safety and operations.
"""


def build_popularity_prompt(data: Dict[str, Any]) -> str:
    """Prompt asking how popular an event is likely to be and what competes with it."""
    popularity = data.get("popularity") or {}
    nearby = data.get("nearbyEvents") or {}

    nearby_lines = []
    for result in (nearby.get("results") or [])[:8]:
        title = result.get("title") or "Untitled"
        when = result.get("date") or "date unknown"
        nearby_lines.append(f"- {title} ({when})")

    overview = nearby.get("ai_overview") or {}
    overview_text = " ".join(
        block.get("snippet", "") for block in overview.get("text_blocks") or [] if isinstance(block, dict)
    ).strip()
    overview_line = f"\nSearch overview: {overview_text[:1500]}" if overview_text else ""

    return f"""
You are an event analyst estimating how popular an upcoming event will be and how much crowd it will draw.

Event Details:
- Name: {data.get('name') or 'Unknown'}
- Venue: {data.get('venue') or 'Unknown'}
- Start: {data.get('dateOfEventStart') or 'Unknown'}
- Type: {popularity.get('type') or 'Unspecified'}
- Featuring: {popularity.get('feat') or 'Unspecified'}
- Audience location: {popularity.get('location') or 'Unspecified'}

Other events found near the venue on the same date:
{chr(10).join(nearby_lines) if nearby_lines else '- None found'}
{overview_line}

STRICTLY RESPOND ONLY IN JSON with this structure:

{POPULARITY_RESPONSE_FORMAT}

IMPORTANT:
- popularityScore must be an integer between 0 and 100.
- List competing events only if they appear above.
- Only output valid JSON. No extra explanations.
"""
