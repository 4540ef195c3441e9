from __future__ import annotations
import json
import logging
import re
from typing import Optional

import requests

from config import OPENAI_API_URL, OPENAI_MODEL
from image_tools import resize_image, to_data_url

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a workout data extractor. The user will send a photo of a cardio machine's display screen (treadmill, elliptical, bike, stair climber, etc.).

Extract the workout summary and return ONLY a JSON object with these exact keys:

{
  "elapsedTimeSeconds": <number, total workout duration in seconds>,
  "calories": <number, total calories burned>,
  "distanceMiles": <number, distance in miles (convert from km if needed)>,
  "distanceClimbedFeet": <number | null, vertical climb in feet (convert from meters if needed)>,
  "avgSpeedMph": <number, average speed in mph (convert from km/h if needed)>,
  "avgPaceSecondsPerMile": <number | null, average pace in seconds per mile>,
  "avgHeartRate": <number | null, average heart rate in BPM>
}

Rules:
- Return ONLY valid JSON, no markdown, no explanation.
- Use null for any field you cannot read from the photo.
- Convert metric units to imperial (km to miles, km/h to mph, meters to feet).
- For elapsed time, convert "MM:SS" or "H:MM:SS" format into total seconds.
- For pace like "8:51 / Mile", convert to total seconds (8*60 + 51 = 531)."""

USER_PROMPT = "Extract the workout data from this cardio machine screen."

REQUIRED_FIELDS = ("elapsedTimeSeconds", "calories", "distanceMiles")

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


class ExtractionError(Exception):
    """Raised when a workout cannot be read from a photo."""


def parse_extraction(raw: str) -> dict:
    """Parse the model's JSON reply, tolerating markdown code fences."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_END.sub("", _FENCE_START.sub("", cleaned))
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Failed to parse LLM response: {e}\nRaw: {raw}")
    if not isinstance(data, dict):
        raise ExtractionError(f"Failed to parse LLM response: not an object\nRaw: {raw}")
    for name in REQUIRED_FIELDS:
        if data.get(name) is None:
            raise ExtractionError(
                f"Failed to parse LLM response: LLM did not extract required field: {name}\nRaw: {raw}"
            )
    return data


class VisionExtractor:
    """Read cardio machine screens through the chat completions API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = OPENAI_API_URL,
        model: str = OPENAI_MODEL,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _payload(self, image_url: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": image_url}},
                        {"type": "text", "text": USER_PROMPT},
                    ],
                },
            ],
            "max_completion_tokens": 500,
            "temperature": 0,
        }

    def extract(self, image_bytes: bytes) -> dict:
        """Return the workout fields read from ``image_bytes``."""
        if not self.api_key:
            raise ExtractionError("OpenAI API key not configured")
        try:
            image_url = to_data_url(resize_image(image_bytes))
        except OSError as e:
            raise ExtractionError(f"Failed to load image for resize: {e}") from e
        try:
            resp = self.session.post(
                self.api_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json=self._payload(image_url),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExtractionError(f"OpenAI API request failed: {e}") from e
        if not resp.ok:
            raise ExtractionError(f"OpenAI API error ({resp.status_code}): {resp.text}")
        try:
            data = resp.json()
        except ValueError as e:
            raise ExtractionError(f"Invalid response from OpenAI: {e}") from e
        if not isinstance(data, dict):
            raise ExtractionError("Invalid response from OpenAI: not an object")
        choices = data.get("choices") or [{}]
        raw = (choices[0].get("message") or {}).get("content")
        if not raw:
            raise ExtractionError("No content returned from OpenAI")
        extraction = parse_extraction(raw)
        found = sorted(k for k, v in extraction.items() if v is not None)
        logger.info("extracted workout fields: %s", ", ".join(found))
        return extraction
