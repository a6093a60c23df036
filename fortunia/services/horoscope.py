"""Daily horoscope generation.

The prompt is composed server-side and the model is asked for a JSON object
{sign, prediction, ratings{love, career, health}}. The date is always set here,
never taken from model output.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from fortunia.errors import ApiError, ApiErrorCode, InvalidRequestError
from fortunia.logging import get_logger
from fortunia.services.clock import Clock, utc_now
from fortunia.services.llm import InferenceClient, InferenceError
from fortunia.services.prompts import compose_horoscope_prompt

logger = get_logger(__name__)

ZODIAC_SIGNS = (
    "aries",
    "taurus",
    "gemini",
    "cancer",
    "leo",
    "virgo",
    "libra",
    "scorpio",
    "sagittarius",
    "capricorn",
    "aquarius",
    "pisces",
)
RATING_KEYS = ("love", "career", "health")
MIN_RATING = 1
MAX_RATING = 5

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class HoroscopeParseError(ValueError):
    """Model output was not a usable horoscope object."""


@dataclass(frozen=True)
class Horoscope:
    sign: str
    prediction: str
    ratings: dict[str, int]
    date: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "sign": self.sign,
            "prediction": self.prediction,
            "ratings": dict(self.ratings),
            "date": self.date,
        }


def normalize_sign(sign: str | None) -> str:
    """Lower-case a zodiac sign name.

    Raises:
        InvalidRequestError: Unknown sign.
    """
    value = (sign or "").strip().lower()
    if value not in ZODIAC_SIGNS:
        raise InvalidRequestError(message=f"Unknown zodiac sign: {sign}")
    return value


def _clamp_rating(value: Any) -> int:
    try:
        rating = round(float(value))
    except (TypeError, ValueError):
        raise HoroscopeParseError("Rating is not a number") from None
    return max(MIN_RATING, min(MAX_RATING, rating))


def parse_horoscope_output(text: str, sign: str) -> tuple[str, dict[str, int]]:
    """Extract (prediction, ratings) from model output.

    Accepts bare JSON or JSON wrapped in a markdown code fence.
    """
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        stripped = match.group(1)

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise HoroscopeParseError("Output is not JSON") from e
    if not isinstance(data, dict):
        raise HoroscopeParseError("Output is not a JSON object")

    prediction = data.get("prediction")
    if not isinstance(prediction, str) or not prediction.strip():
        raise HoroscopeParseError("Missing prediction")

    raw_ratings = data.get("ratings")
    if not isinstance(raw_ratings, dict):
        raise HoroscopeParseError("Missing ratings")
    ratings = {key: _clamp_rating(raw_ratings.get(key)) for key in RATING_KEYS}

    returned_sign = str(data.get("sign", sign)).strip().lower()
    if returned_sign != sign:
        logger.info("horoscope.sign_mismatch", requested=sign, returned=returned_sign)

    return prediction.strip(), ratings


class HoroscopeService:
    def __init__(self, inference: InferenceClient, *, clock: Clock = utc_now):
        self._inference = inference
        self._clock = clock

    async def generate(self, sign: str) -> Horoscope:
        """Generate today's horoscope for sign.

        Raises:
            InvalidRequestError: Unknown sign.
            ApiError(E_INFERENCE_FAILED): Model call failed or output unusable.
        """
        sign = normalize_sign(sign)
        today = self._clock().date()

        try:
            response = await self._inference.generate(compose_horoscope_prompt(sign, today))
        except InferenceError as e:
            raise ApiError(
                ApiErrorCode.E_INFERENCE_FAILED, "Failed to generate horoscope"
            ) from e

        try:
            prediction, ratings = parse_horoscope_output(response.text, sign)
        except HoroscopeParseError as e:
            logger.warning("horoscope.parse_failed", reason=str(e))
            raise ApiError(
                ApiErrorCode.E_INFERENCE_FAILED, "Failed to generate horoscope"
            ) from e

        return Horoscope(sign=sign, prediction=prediction, ratings=ratings, date=today.isoformat())
