"""Share card rendering and upload.

A share card is a 1080x1080 PNG summarizing a reading, rendered with Pillow
and stored under share_cards/ in the readings bucket. Rendering or upload
failures never fail the request: a placeholder URL is returned instead.
"""

import io
import textwrap
from dataclasses import dataclass
from uuid import UUID

from PIL import Image, ImageDraw, ImageFont

from fortunia.auth.identity import Registered
from fortunia.logging import get_logger
from fortunia.services.clock import Clock, utc_now
from fortunia.services.prompts import culture_display_name
from fortunia.services.readings import PersistenceError, ReadingRepository
from fortunia.services.redact import safe_kv
from fortunia.storage.client import StorageClientBase, StorageError
from fortunia.storage.paths import build_share_card_path

logger = get_logger(__name__)

CARD_SIZE = 1080
CARD_INSET = 90
CARD_RADIUS = 40
MAX_TEXT_LINES = 14
WRAP_WIDTH = 42

PLACEHOLDER_BASE_URL = "https://fortunia.app/share-cards"


@dataclass(frozen=True)
class Palette:
    primary: str
    secondary: str
    accent: str


CULTURAL_PALETTES = {
    "chinese": Palette(primary="#9B86BD", secondary="#D4A5A5", accent="#FFD700"),
    "middle_eastern": Palette(primary="#8B4513", secondary="#DAA520", accent="#FF6347"),
    "european": Palette(primary="#4B0082", secondary="#9370DB", accent="#FF69B4"),
}
DEFAULT_PALETTE = CULTURAL_PALETTES["chinese"]

READING_TITLES = {
    "face": "Face Reading",
    "palm": "Palm Reading",
    "coffee": "Coffee Reading",
    "tarot": "Tarot Reading",
}


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def _blend(a: tuple[int, int, int], b: tuple[int, int, int], t: float) -> tuple[int, int, int]:
    return tuple(round(x + (y - x) * t) for x, y in zip(a, b, strict=True))


def _wrap_fortune(text: str) -> list[str]:
    """Wrap text to the card width, ending with an ellipsis when truncated."""
    lines: list[str] = []
    for paragraph in text.split("\n"):
        if paragraph.strip():
            lines.extend(textwrap.wrap(paragraph.strip(), width=WRAP_WIDTH))
    if len(lines) > MAX_TEXT_LINES:
        lines = lines[:MAX_TEXT_LINES]
        last = lines[-1]
        if len(last) > WRAP_WIDTH - 3:
            last = last[: WRAP_WIDTH - 3].rstrip()
        lines[-1] = f"{last}..."
    return lines


def render_share_card(fortune_text: str, reading_type: str, cultural_origin: str) -> bytes:
    """Render a share card PNG and return its bytes."""
    palette = CULTURAL_PALETTES.get(cultural_origin, DEFAULT_PALETTE)
    primary = _hex_to_rgb(palette.primary)
    secondary = _hex_to_rgb(palette.secondary)
    accent = _hex_to_rgb(palette.accent)

    image = Image.new("RGB", (CARD_SIZE, CARD_SIZE))
    draw = ImageDraw.Draw(image)

    # Vertical gradient from primary to secondary, tinted toward white
    white = (255, 255, 255)
    for y in range(CARD_SIZE):
        base = _blend(primary, secondary, y / (CARD_SIZE - 1))
        draw.line([(0, y), (CARD_SIZE, y)], fill=_blend(base, white, 0.75))

    box = (CARD_INSET, CARD_INSET, CARD_SIZE - CARD_INSET, CARD_SIZE - CARD_INSET)
    draw.rounded_rectangle(box, radius=CARD_RADIUS, fill=(248, 249, 250), outline=primary, width=4)

    title_font = ImageFont.load_default(size=72)
    subtitle_font = ImageFont.load_default(size=40)
    body_font = ImageFont.load_default(size=30)
    footer_font = ImageFont.load_default(size=28)

    center_x = CARD_SIZE // 2
    draw.text((center_x, 170), "Fortunia", font=title_font, fill=primary, anchor="mm")
    reading_title = READING_TITLES.get(reading_type, f"{reading_type.capitalize()} Reading")
    draw.text((center_x, 250), reading_title, font=subtitle_font, fill=(51, 51, 51), anchor="mm")
    draw.text(
        (center_x, 300),
        f"{culture_display_name(cultural_origin)} Tradition",
        font=footer_font,
        fill=secondary,
        anchor="mm",
    )
    draw.line([(center_x - 120, 340), (center_x + 120, 340)], fill=accent, width=3)

    y = 390
    for line in _wrap_fortune(fortune_text):
        draw.text((center_x, y), line, font=body_font, fill=(68, 68, 68), anchor="mm")
        y += 38

    draw.text((center_x, 900), "Discover Your Fortune", font=subtitle_font, fill=primary, anchor="mm")
    draw.text((center_x, 950), "fortunia.app", font=footer_font, fill=(102, 102, 102), anchor="mm")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class ShareCardService:
    """Creates share cards and links them to readings."""

    def __init__(
        self,
        storage: StorageClientBase,
        repository: ReadingRepository,
        *,
        clock: Clock = utc_now,
        placeholder_base: str = PLACEHOLDER_BASE_URL,
    ):
        self._storage = storage
        self._repository = repository
        self._clock = clock
        self._placeholder_base = placeholder_base.rstrip("/")

    def create(
        self,
        principal: Registered,
        fortune_text: str,
        reading_type: str,
        cultural_origin: str,
        reading_id: UUID | None = None,
    ) -> str:
        """Render and upload a share card, returning its URL.

        Falls back to a placeholder URL on render or upload failure.
        """
        epoch_ms = int(self._clock().timestamp() * 1000)
        principal_id = principal.principal_id
        path = build_share_card_path(principal_id, epoch_ms)

        try:
            content = render_share_card(fortune_text, reading_type, cultural_origin)
            self._storage.upload(path, content, content_type="image/png")
            url = self._storage.public_url(path)
        except (StorageError, OSError, ValueError) as e:
            logger.warning(
                "share_card.generation_failed",
                **safe_kv(error_type=type(e).__name__, fortune_chars=len(fortune_text)),
            )
            return f"{self._placeholder_base}/placeholder-{principal_id}-{epoch_ms}.png"

        logger.info("share_card.created", path=path, reading_type=reading_type)

        if reading_id is not None:
            try:
                linked = self._repository.set_share_card_url(reading_id, principal_id, url)
            except PersistenceError as e:
                logger.warning("share_card.link_failed", reading_id=str(reading_id), error=str(e))
            else:
                if not linked:
                    logger.info("share_card.reading_not_owned", reading_id=str(reading_id))

        return url
