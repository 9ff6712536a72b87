"""
Best-effort field extraction from provider-native event payloads.

Each heuristic is an ordered list of named accessors. The first value
that passes a plausibility check wins; otherwise a fixed fallback is
returned (category default image, "Price TBA", "Event"). Nothing in
here raises on malformed input.
"""

import random
import re
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


Accessor = Callable[[Any], Any]
Candidate = tuple[str, Accessor]

DEFAULT_EVENT_IMAGE = "/community-event.png"
NO_DESCRIPTION = "No description available."

IMAGE_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tiff", ".avif",
)

IMAGE_HOSTS = (
    "images.unsplash.com", "unsplash.com",
    "img.evbuc.com", "cdn.evbuc.com", "eventbrite.com",
    "s1.ticketm.net", "media.ticketmaster.com", "tmol-prd.s3.amazonaws.com",
    "rapidapi.com",
    "gstatic.com", "googleusercontent.com", "ggpht.com",
    "pexels.com", "pixabay.com",
    "cloudinary.com", "res.cloudinary.com",
    "amazonaws.com", "cloudfront.net", "fastly.net", "akamaized.net",
    "fbcdn.net", "cdninstagram.com", "twimg.com", "ytimg.com",
    "imgur.com", "i.imgur.com", "flickr.com", "staticflickr.com",
    "meetupstatic.com", "stubhubstatic.com", "seatgeek.com",
    "wp.com", "squarespace-cdn.com", "wixstatic.com",
)

IMAGE_KEYWORDS = ("image", "photo", "picture", "img", "thumb")

IMAGE_PATH_PATTERN = re.compile(
    r"/(images?|photos?|pictures?|thumbs?|media|assets|uploads?|gallery)/",
    re.IGNORECASE,
)

CATEGORY_IMAGES = {
    "music": "/images/categories/music-default.jpg",
    "concert": "/images/categories/music-default.jpg",
    "festival": "/images/categories/festival-default.jpg",
    "sports": "/images/categories/sports-default.jpg",
    "theater": "/images/categories/theater-default.jpg",
    "comedy": "/images/categories/comedy-default.jpg",
    "dance": "/images/categories/dance-default.jpg",
    "art": "/images/categories/art-default.jpg",
    "food": "/images/categories/food-default.jpg",
    "business": "/images/categories/business-default.jpg",
    "conference": "/images/categories/conference-default.jpg",
    "workshop": "/images/categories/workshop-default.jpg",
    "nightlife": "/images/categories/nightlife-default.jpg",
    "community": "/images/categories/community-default.jpg",
}

# Keyword found inside a tag -> display category. Order matters.
TAG_CATEGORIES = (
    ("music", "Music"),
    ("concert", "Music"),
    ("festival", "Music"),
    ("art", "Arts"),
    ("theater", "Arts"),
    ("exhibition", "Arts"),
    ("sport", "Sports"),
    ("game", "Sports"),
    ("food", "Food"),
    ("restaurant", "Food"),
    ("business", "Business"),
    ("conference", "Business"),
    ("networking", "Business"),
    ("tech", "Technology"),
    ("health", "Health"),
    ("education", "Education"),
)

FREE_PATTERN = re.compile(r"\b(free|no charge|complimentary)\b", re.IGNORECASE)
AMOUNT_PATTERN = re.compile(r"\$(\d+(?:\.\d{2})?)")
US_DATE_PATTERN = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")


def path(*keys: str | int) -> Accessor:
    """Build an accessor walking nested dicts/lists, None on any miss."""

    def access(raw: Any) -> Any:
        current = raw
        for key in keys:
            if isinstance(key, int):
                if not isinstance(current, Sequence) or isinstance(current, str):
                    return None
                if not -len(current) <= key < len(current):
                    return None
                current = current[key]
            else:
                if not isinstance(current, Mapping):
                    return None
                current = current.get(key)
            if current is None:
                return None
        return current

    return access


def first_valid(
    raw: Any,
    candidates: Iterable[Candidate],
    accept: Callable[[Any], bool],
) -> Optional[tuple[str, Any]]:
    """Return (candidate name, value) for the first accepted candidate."""
    for name, accessor in candidates:
        try:
            value = accessor(raw)
        except (TypeError, ValueError, KeyError, IndexError, AttributeError):
            continue
        if value is not None and accept(value):
            return name, value
    return None


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def is_valid_image_url(url: Any) -> bool:
    """Structural plausibility check for an image URL."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    host = (parsed.hostname or "").lower()
    lowered = url.lower()

    if parsed.path.lower().endswith(IMAGE_EXTENSIONS):
        return True
    if any(host == domain or host.endswith("." + domain) for domain in IMAGE_HOSTS):
        return True
    if any(keyword in lowered for keyword in IMAGE_KEYWORDS):
        return True
    return bool(IMAGE_PATH_PATTERN.search(parsed.path))


def category_image(category: Optional[str]) -> str:
    """Default image for a category, matched by keyword."""
    if not category:
        return DEFAULT_EVENT_IMAGE
    lowered = category.lower()
    for keyword, image in CATEGORY_IMAGES.items():
        if keyword in lowered:
            return image
    return DEFAULT_EVENT_IMAGE


RAPIDAPI_IMAGE_CANDIDATES: tuple[Candidate, ...] = (
    # Direct fields
    ("image", path("image")),
    ("thumbnail", path("thumbnail")),
    ("photo", path("photo")),
    ("picture", path("picture")),
    ("banner", path("banner")),
    ("cover_image", path("cover_image")),
    ("poster", path("poster")),
    ("featured_image", path("featured_image")),
    ("event_image", path("event_image")),
    ("main_image", path("main_image")),
    # Arrays
    ("images[0].url", path("images", 0, "url")),
    ("images[0].original.url", path("images", 0, "original", "url")),
    ("images[0].large.url", path("images", 0, "large", "url")),
    ("images[0].medium.url", path("images", 0, "medium", "url")),
    ("images[0]", path("images", 0)),
    ("photos[0].url", path("photos", 0, "url")),
    ("photos[0].original.url", path("photos", 0, "original", "url")),
    ("photos[0]", path("photos", 0)),
    # Sized variants
    ("image_large", path("image_large")),
    ("image_medium", path("image_medium")),
    ("image_small", path("image_small")),
    ("thumbnail_large", path("thumbnail_large")),
    ("thumbnail_medium", path("thumbnail_medium")),
    # Venue
    ("venue.image", path("venue", "image")),
    ("venue.photo", path("venue", "photo")),
    ("venue.banner", path("venue", "banner")),
    ("venue.cover_image", path("venue", "cover_image")),
    ("venue.images[0]", path("venue", "images", 0)),
    ("venue.images[0].url", path("venue", "images", 0, "url")),
    # Organizer
    ("organizer.image", path("organizer", "image")),
    ("organizer.logo", path("organizer", "logo")),
    ("organizer.avatar", path("organizer", "avatar")),
    ("organizer.photo", path("organizer", "photo")),
    ("organizer.banner", path("organizer", "banner")),
    # Performers
    ("artist.image", path("artist", "image")),
    ("artist.photo", path("artist", "photo")),
    ("performer.image", path("performer", "image")),
    ("performer.photo", path("performer", "photo")),
    ("artists[0].image", path("artists", 0, "image")),
    ("performers[0].image", path("performers", 0, "image")),
    # Social
    ("facebook.image", path("facebook", "image")),
    ("twitter.image", path("twitter", "image")),
    ("instagram.image", path("instagram", "image")),
)


def extract_image(
    raw: Any,
    candidates: Iterable[Candidate] = RAPIDAPI_IMAGE_CANDIDATES,
    category: Optional[str] = None,
) -> str:
    """First valid image URL among ``candidates``, else the category default."""
    match = first_valid(raw, candidates, is_valid_image_url)
    if match:
        return match[1].strip()
    return category_image(category)


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------

def _to_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def format_amount(amount: float) -> str:
    """Format a dollar amount: 25 -> "$25", 25.5 -> "$25.50"."""
    if float(amount).is_integer():
        return f"${int(amount)}"
    return f"${amount:.2f}"


def format_price_range(low: Any, high: Any = None) -> Optional[str]:
    """Display string for a min/max pair, None when neither is usable."""
    lo, hi = _to_amount(low), _to_amount(high)
    if lo is None and hi is None:
        return None
    if lo is None:
        return f"Up to {format_amount(hi)}"
    if hi is None:
        return f"From {format_amount(lo)}"
    if lo == 0 and hi == 0:
        return "Free"
    if lo == hi:
        return format_amount(lo)
    return f"{format_amount(lo)} - {format_amount(hi)}"


def extract_price(raw: Any) -> str:
    """Price display string for a generic event payload."""
    if not isinstance(raw, Mapping):
        return "Price TBA"

    price = raw.get("price")
    if raw.get("is_free") is True or path("price", "is_free")(raw) is True:
        return "Free"

    if isinstance(price, Mapping):
        text = format_price_range(price.get("min"), price.get("max"))
        if text:
            return text
    elif isinstance(price, str) and price.strip():
        if FREE_PATTERN.search(price):
            return "Free"
        if AMOUNT_PATTERN.search(price):
            return price.strip()
    elif _to_amount(price) is not None:
        return "Free" if _to_amount(price) == 0 else format_amount(_to_amount(price))

    text = format_price_range(raw.get("min_price"), raw.get("max_price"))
    if text:
        return text

    blob = " ".join(
        str(raw.get(field) or "") for field in ("name", "title", "description")
    )
    if FREE_PATTERN.search(blob):
        return "Free"

    amounts = [float(m) for m in AMOUNT_PATTERN.findall(blob)]
    if amounts:
        return format_price_range(min(amounts), max(amounts)) or "Price TBA"

    return "Price TBA"


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def category_from_tags(tags: Iterable[Any]) -> str:
    tag_list = [t.strip() for t in tags if isinstance(t, str) and t.strip()]
    for tag in tag_list:
        lowered = tag.lower()
        for keyword, label in TAG_CATEGORIES:
            if keyword in lowered:
                return label
    if tag_list:
        return tag_list[0][:1].upper() + tag_list[0][1:]
    return "Event"


def extract_category(raw: Any) -> str:
    """Category from an explicit field, else from tags, else "Event"."""
    if isinstance(raw, Mapping):
        explicit = raw.get("category")
        if isinstance(explicit, str) and explicit.strip():
            return explicit.strip()
        tags = raw.get("tags") or []
    elif isinstance(raw, (list, tuple)):
        tags = raw
    else:
        return "Event"
    return category_from_tags(tags)


# ---------------------------------------------------------------------------
# Ids, text, dates
# ---------------------------------------------------------------------------

def string_hash(value: str) -> int:
    """Deterministic 32-bit string hash (h = 31*h + c), made non-negative."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def stable_event_id(native_id: Any, *fallback_parts: Any) -> int:
    """Numeric id from a provider id, stable across repeated fetches."""
    if isinstance(native_id, int) and not isinstance(native_id, bool):
        return abs(native_id)
    if isinstance(native_id, str) and native_id.strip():
        native = native_id.strip()
        return int(native) if native.isdigit() else string_hash(native)
    return string_hash("|".join(str(part or "") for part in fallback_parts))


def clean_description(text: Any, fallback: str = NO_DESCRIPTION) -> str:
    """Plain-text description with HTML stripped and whitespace collapsed."""
    if not isinstance(text, str) or not text.strip():
        return fallback
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ", strip=True)
    text = re.sub(r"\s+", " ", text).strip()
    return text or fallback


def parse_event_datetime(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse provider date values into a naive datetime.

    Accepts ISO 8601 strings, unix timestamps (seconds or milliseconds),
    YYYY-MM-DD and MM/DD/YYYY. Dates more than a year in the past or two
    years in the future are treated as bogus and rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) or (
            isinstance(value, str) and value.strip().isdigit() and len(value.strip()) in (10, 13)
        ):
            number = int(value)
            parsed = datetime.fromtimestamp(number / 1000 if number > 10**11 else number)
        elif isinstance(value, str) and US_DATE_PATTERN.match(value.strip()):
            parsed = datetime.strptime(value.strip(), "%m/%d/%Y")
        elif isinstance(value, str) and value.strip():
            parsed = date_parser.parse(value.strip())
        else:
            return None
    except (ValueError, OverflowError, OSError, TypeError):
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)

    now = now or datetime.now()
    if not (now - relativedelta(years=1) <= parsed <= now + relativedelta(years=2)):
        return None
    return parsed


def format_event_date(value: Optional[datetime]) -> str:
    """Format as e.g. "July 1, 2024"."""
    if value is None:
        return "Date TBA"
    return f"{value:%B} {value.day}, {value.year}"


def format_event_time(value: Optional[datetime]) -> str:
    """Format as e.g. "7:00 PM"."""
    if value is None:
        return "Time TBA"
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def synthesize_attendees(rng: random.Random) -> int:
    """Placeholder attendee count for providers that report none."""
    return rng.randint(50, 1049)
