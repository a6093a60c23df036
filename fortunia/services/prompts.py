"""Prompt composition for readings and horoscopes.

compose() is a pure function: same inputs (including the injected date)
always produce byte-identical output. It selects a base template by reading
type, optionally adds a clause steering toward the requested cultural
tradition, and splices a birth-profile personalization immediately before
the output-length instruction.
"""

from dataclasses import dataclass
from datetime import date

LENGTH_INSTRUCTION = "Write 200–300 words"

CULTURE_DISPLAY_NAMES = {
    "chinese": "Chinese",
    "middle_eastern": "Middle Eastern",
    "european": "European",
}
DEFAULT_CULTURE_NAME = "Mystical"

PROMPT_TEMPLATES = {
    "face": """
Greetings, wise seeker. As a master of the ancient Chinese art of Mian Xiang, I shall read the destiny written upon your face with the wisdom of the Five Elements and the harmony of Yin-Yang.

Study this face with reverence, examining the forehead for early life patterns, the eyes for spirit and wisdom, the nose for wealth and ambition, the mouth for relationships and emotion, and the chin for stability and future promise. Each feature tells a story of your journey through this world.

Write 200–300 words in a calm, elegant tone that flows like poetry yet remains structured and meaningful. Let your words carry the weight of ancient wisdom while speaking directly to this seeker's soul. Conclude with gentle guidance for harmony and prosperity.
""",
    "palm": """
Welcome, dear seeker. I am a traditional Middle Eastern palm reader, guided by centuries of ancient wisdom passed down through generations. Your hand holds the map of your destiny, written in lines that speak of your deepest truths.

Examine this hand with care and reverence. Read the heart line to understand matters of love and emotion, the head line for intellect and decision-making, the life line for vitality and life force, and the fate line for career and purpose. See how these lines intertwine to reveal the beautiful complexity of your journey.

Write 200–300 words with a confident, compassionate tone that honors both the seeker and the ancient art. Let your reading flow like a gentle stream of wisdom, offering hope and insight about balance and fulfillment. Conclude with a message of transformation and growth.
""",
    "coffee": """
Welcome, beloved seeker. I am a master of Turkish coffee fortune telling, reading the mystical symbols that dance within your cup with the intuition and tradition of my ancestors. Each pattern tells a story written in the language of destiny.

Read the story revealed by these sacred grounds: the bottom speaks of your past and foundation, the middle reveals your present moment and current energies, while the top and rim whisper of your future path. Look for the symbols that call to you: birds bringing messages, eyes offering protection, hearts speaking of love, paths showing direction.

Write 200–300 words like a poetic story that flows naturally from your heart. Let your words be warm and narrative, as if you're sharing wisdom with a dear friend. Conclude with a message of hope and emotional clarity that illuminates the seeker's path forward.
""",
    "tarot": """
Welcome, seeker of hidden truths. I am a keeper of the European tarot, reading the ancient cards as they were read in candlelit salons from Marseille to Venice. Three cards have been drawn for you from the Major Arcana.

Name each card as it reveals itself: the first speaks of the past that shaped you, the second of the present that surrounds you, the third of the future that awaits. Describe the imagery of each card, its upright meaning, and how the three together form a single story of your path.

Write 200–300 words in an evocative, theatrical yet kind voice, letting the symbolism unfold one card at a time. Conclude with a clear piece of counsel the seeker can carry into the days ahead.
""",
}

# Tradition each template is written in; a different cultural_origin adds a steering clause.
NATIVE_CULTURES = {
    "face": "chinese",
    "palm": "middle_eastern",
    "coffee": "middle_eastern",
    "tarot": "european",
}


@dataclass(frozen=True)
class BirthProfile:
    """Birth details used to personalize a reading."""

    birth_date: date | None = None
    birth_time: str | None = None
    birth_city: str | None = None
    birth_country: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.birth_date or self.birth_time or self.birth_city or self.birth_country)


def culture_display_name(cultural_origin: str) -> str:
    return CULTURE_DISPLAY_NAMES.get(cultural_origin, DEFAULT_CULTURE_NAME)


def completed_years(birth_date: date, today: date) -> int:
    """Whole years elapsed between birth_date and today."""
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def _personalization(profile: BirthProfile, today: date) -> str:
    city, country = profile.birth_city, profile.birth_country
    if city and country:
        location = f"{city}, {country}"
    else:
        location = city or country or "a sacred place"

    time_clause = f" at the sacred hour of {profile.birth_time}" if profile.birth_time else ""

    age_clause = ""
    if profile.birth_date:
        age = completed_years(profile.birth_date, today)
        if age >= 0:
            age_clause = f", now {age} years of life experience"

    return (
        f"This seeker was born in {location}{time_clause}{age_clause}, carrying the unique "
        "energy of that moment and place. Let this birth essence guide your interpretation, "
        "weaving their personal story into the ancient wisdom you share."
    )


def _splice_before_length(prompt: str, clause: str) -> str:
    return prompt.replace(LENGTH_INSTRUCTION, f"{clause}\n\n{LENGTH_INSTRUCTION}", 1)


def compose(
    reading_type: str,
    cultural_origin: str,
    profile: BirthProfile | None = None,
    *,
    today: date,
) -> str:
    """Build the model instruction for a reading.

    Args:
        reading_type: One of face, palm, coffee, tarot.
        cultural_origin: Requested tradition (e.g. "chinese").
        profile: Optional birth details.
        today: Reference date for the age calculation.

    Returns:
        The composed prompt.

    Raises:
        ValueError: Unknown reading type.
    """
    try:
        prompt = PROMPT_TEMPLATES[reading_type]
    except KeyError:
        raise ValueError(f"Unknown reading type: {reading_type}") from None

    if cultural_origin != NATIVE_CULTURES[reading_type]:
        prompt = _splice_before_length(
            prompt,
            f"Draw your imagery and symbolism from the {culture_display_name(cultural_origin)} "
            "tradition, honoring its customs as you interpret what you see.",
        )

    if profile is not None and not profile.is_empty:
        prompt = _splice_before_length(prompt, _personalization(profile, today))

    return prompt


def compose_horoscope_prompt(sign: str, today: date) -> str:
    """Instruction for a daily horoscope returned as a JSON object."""
    return (
        f"You are a warm, insightful astrologer. Write the horoscope for {sign.capitalize()} "
        f"for {today.isoformat()}. Speak to love, career and health in 80 to 120 words.\n\n"
        "Respond with a single JSON object and nothing else, using exactly these keys:\n"
        f'{{"sign": "{sign}", "prediction": "<text>", '
        '"ratings": {"love": <integer 1-5>, "career": <integer 1-5>, "health": <integer 1-5>}}'
    )
