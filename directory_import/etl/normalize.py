"""Utilities for transforming raw CSV export rows into normalized company data."""

import json
import logging
import re
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from directory_import.models import ImportRow, NormalizedCompany, RawImportRow, ReviewInput

logger = logging.getLogger(__name__)

MAX_IMAGES = 10
UNKNOWN_AUTHOR = "مجهول"

# Canonical field -> header names seen in exports, first non-empty wins.
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("Nom", "Name", "name"),
    "rating_text": ("Note", "Rating"),
    "category": ("Catégorie", "Categorie", "Category", "category"),
    "sub_category": ("SubCategory", "subCategory", "Sub Category"),
    "address": ("Adresse", "Address", "address"),
    "country": ("Country", "country"),
    "city": ("City", "city"),
    "sub_area": ("SubArea", "subArea", "Sub Area"),
    "phone": ("Téléphone", "Telephone", "Phone", "phone"),
    "email": ("Email", "E-mail", "email"),
    "website": ("SiteWeb", "Website", "website"),
    "description": ("Description", "description"),
    "images": ("Images", "Photos"),
    "hero_image": ("HeroImage", "heroImage"),
    "reviews": ("Reviews", "reviews"),
    "tags": ("Tags", "tags"),
}

CATEGORY_DESCRIPTIONS = {
    "software company": "شركة متخصصة في تطوير البرمجيات والحلول التقنية",
    "website designer": "شركة متخصصة في تصميم وتطوير المواقع الإلكترونية",
    "corporate office": "مكتب شركة يقدم خدمات تجارية ومهنية",
    "it company": "شركة تقنية معلومات تقدم حلول تكنولوجية متطورة",
    "restaurant": "مطعم يقدم أشهى الأطباق والوجبات",
    "cafe": "مقهى يقدم المشروبات الساخنة والباردة",
    "hospital": "مستشفى يقدم خدمات الرعاية الصحية الشاملة",
    "clinic": "عيادة طبية متخصصة",
    "pharmacy": "صيدلية تقدم الأدوية والمستلزمات الطبية",
}

CATEGORY_SERVICES = {
    "software company": ["تطوير البرمجيات", "تطبيقات الويب", "تطبيقات الهاتف", "استشارات تقنية"],
    "website designer": ["تصميم المواقع", "تطوير المواقع", "تحسين محركات البحث", "استضافة المواقع"],
    "restaurant": ["تناول في المطعم", "خدمة التوصيل", "المناسبات والحفلات", "طعام طازج"],
    "hospital": ["طب عام", "طوارئ 24/7", "فحوصات طبية", "عمليات جراحية"],
    "clinic": ["فحوصات طبية", "استشارات طبية", "علاج متخصص"],
}

_UAE_MOBILE_PREFIXES = ("50", "52", "54", "55", "56")

_RATING_PATTERN = re.compile(r"(\d+\.?\d*)")
_REVIEW_COUNT_PATTERN = re.compile(r"\((\d+)\)")
_LIST_SEPARATORS = re.compile(r"[;,]")
_PHONE_STRIP = re.compile(r"[^\d+]")
_LEADING_INT = re.compile(r"\s*([-+]?\d+)")
_RELATIVE_UNITS = ("year", "month", "week", "day", "hour")


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def map_columns(raw: RawImportRow) -> ImportRow:
    """Map source header names onto pipeline field names."""
    values: Dict[str, str] = {}
    for field_def in fields(ImportRow):
        for header in COLUMN_ALIASES.get(field_def.name, ()):
            value = _clean(raw.get(header))
            if value:
                values[field_def.name] = value
                break
    return ImportRow(**values)


def extract_rating(note_text: Optional[str]) -> Tuple[float, int]:
    """Split ``"4.5 (120)"`` into ``(4.5, 120)``; missing parts become zero."""
    if not note_text:
        return 0.0, 0

    rating_match = _RATING_PATTERN.search(note_text)
    count_match = _REVIEW_COUNT_PATTERN.search(note_text)
    rating = float(rating_match.group(1)) if rating_match else 0.0
    review_count = int(count_match.group(1)) if count_match else 0
    return rating, review_count


def split_list(text: Optional[str]) -> List[str]:
    return [token.strip() for token in _LIST_SEPARATORS.split(text or "") if token.strip()]


def extract_images(images_text: Optional[str]) -> List[str]:
    urls = [token for token in split_list(images_text) if token.startswith("http")]
    return urls[:MAX_IMAGES]


def _reject_constant(token: str) -> Any:
    raise ValueError(f"{token} is not valid JSON")


def _coerce_review_rating(value: Any) -> int:
    if isinstance(value, bool):
        return 5
    if isinstance(value, (int, float)):
        try:
            return int(value) or 5
        except (ValueError, OverflowError):
            return 5
    match = _LEADING_INT.match(str(value or ""))
    if not match:
        return 5
    return int(match.group(1)) or 5


def extract_reviews(reviews_text: Optional[str]) -> List[ReviewInput]:
    """Parse the JSON review list; malformed input yields an empty list."""
    if not reviews_text or reviews_text.strip() == "[]":
        return []

    try:
        payload = json.loads(reviews_text, parse_constant=_reject_constant)
    except (TypeError, ValueError) as exc:
        logger.warning("Unable to parse reviews JSON: %s", exc)
        return []

    if not isinstance(payload, list):
        return []

    reviews: List[ReviewInput] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        reviews.append(
            ReviewInput(
                author=_clean(entry.get("author")) or UNKNOWN_AUTHOR,
                text=_clean(entry.get("text")),
                rating=_coerce_review_rating(entry.get("rating")),
                date=_clean(entry.get("date")) or datetime.now(timezone.utc).isoformat(),
                title=_clean(entry.get("title")) or None,
            )
        )
    return reviews


def normalize_phone(phone: Optional[str]) -> str:
    """Best-effort E.164 conversion for Syrian and neighbouring numbers.

    Returns the input unchanged whenever the heuristics cannot produce a
    ``+``-prefixed number of at least ten characters.
    """
    if not phone:
        return ""

    clean = _PHONE_STRIP.sub("", str(phone))

    if clean.startswith("00963"):
        clean = "+963" + clean[5:]
    elif clean.startswith("0963"):
        clean = "+963" + clean[4:]
    elif clean.startswith("963"):
        clean = "+" + clean
    elif clean.startswith("09") and len(clean) == 10:
        clean = "+963" + clean[1:]
    elif clean.startswith("9") and len(clean) == 9:
        clean = "+963" + clean
    elif not clean.startswith("+") and len(clean) >= 7:
        if clean.startswith("07") and len(clean) == 10:
            clean = "+962" + clean[1:]
        elif clean.startswith("05") and len(clean) == 10:
            clean = "+966" + clean[1:]
        elif clean.startswith(_UAE_MOBILE_PREFIXES) and len(clean) == 9:
            clean = "+971" + clean
        elif len(clean) in (7, 8):
            clean = "+96311" + clean
        elif len(clean) == 9:
            clean = "+963" + clean
        elif len(clean) == 10 and clean.startswith("0"):
            clean = "+963" + clean[1:]

    if len(clean) < 10 or not clean.startswith("+"):
        logger.debug("Phone normalization failed for %r (got %r)", phone, clean)
        return phone

    if clean != phone:
        logger.debug("Normalized phone %r -> %r", phone, clean)
    return clean


def generate_description(company_name: str, category: str) -> str:
    base = CATEGORY_DESCRIPTIONS.get(category.lower().strip())
    if not base:
        base = f"شركة {company_name} متخصصة في {category}"
    return f"{company_name} - {base}"


def generate_services(category: str) -> List[str]:
    return list(CATEGORY_SERVICES.get(category.lower().strip(), []))


def parse_review_date(date_text: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Turn ``"2 years ago"`` style phrases or literal dates into a timestamp."""
    now = now or datetime.now(timezone.utc)
    text = _clean(date_text).lower()
    if not text:
        return now

    for unit in _RELATIVE_UNITS:
        if unit in text:
            digits = re.search(r"\d+", text)
            if digits:
                amount = int(digits.group(0))
            else:
                amount = 1 if re.match(r"an?\b", text) else 0
            return now - relativedelta(**{f"{unit}s": amount})

    try:
        parsed = date_parser.parse(date_text)
    except (ValueError, OverflowError):
        return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_row(raw: RawImportRow) -> NormalizedCompany:
    """Build a NormalizedCompany from one raw CSV record. Never raises on bad data."""
    row = map_columns(raw)
    rating, review_count = extract_rating(row.rating_text)

    return NormalizedCompany(
        name=row.name,
        category=row.category,
        sub_category=row.sub_category,
        address=row.address,
        country=row.country,
        city=row.city,
        sub_area=row.sub_area,
        phone=normalize_phone(row.phone),
        email=row.email.lower(),
        website=row.website,
        description=row.description or generate_description(row.name, row.category),
        rating=rating,
        review_count=review_count,
        images=extract_images(row.images),
        hero_image=row.hero_image if row.hero_image.startswith("http") else "",
        reviews=extract_reviews(row.reviews),
        services=generate_services(row.category),
        specialties=[],
        tags=split_list(row.tags),
    )
