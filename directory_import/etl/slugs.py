"""Slug generation for companies and canonical reference entities."""

import re
from typing import Callable

_ARABIC_TO_LATIN = {
    "ا": "a",
    "أ": "a",
    "إ": "i",
    "آ": "aa",
    "ب": "b",
    "ت": "t",
    "ث": "th",
    "ج": "j",
    "ح": "h",
    "خ": "kh",
    "د": "d",
    "ذ": "dh",
    "ر": "r",
    "ز": "z",
    "س": "s",
    "ش": "sh",
    "ص": "s",
    "ض": "d",
    "ط": "t",
    "ظ": "z",
    "ع": "a",
    "غ": "gh",
    "ف": "f",
    "ق": "q",
    "ك": "k",
    "ل": "l",
    "م": "m",
    "ن": "n",
    "ه": "h",
    "و": "w",
    "ي": "y",
    "ى": "a",
    "ة": "h",
    "ء": "a",
    "ئ": "e",
    "ؤ": "o",
}
_TRANSLITERATION = str.maketrans(_ARABIC_TO_LATIN)

_WHITESPACE = re.compile(r"\s+")
_NON_LATIN_SLUG_CHARS = re.compile(r"[^\w\-]", re.ASCII)
_NON_LABEL_SLUG_CHARS = re.compile(r"[^\w\-\u0600-\u06FF]", re.ASCII)
_REPEATED_HYPHENS = re.compile(r"-+")


def _finish(value: str, pattern: re.Pattern, fallback: str) -> str:
    value = _WHITESPACE.sub("-", value)
    value = pattern.sub("", value)
    value = _REPEATED_HYPHENS.sub("-", value).strip("-")
    return value or fallback


def transliterate(text: str) -> str:
    """Lower-case ``text`` and spell its Arabic letters with Latin ones."""
    result = (text or "").lower().strip()
    result = result.replace("ال", "al-")
    return result.translate(_TRANSLITERATION)


def slugify_company_name(name: str) -> str:
    """ASCII-only slug: ``"شركة الاختبار"`` becomes ``"shrkh-al-akhtbar"``."""
    return _finish(transliterate(name), _NON_LATIN_SLUG_CHARS, "company")


def slugify_label(name: str, fallback: str = "category") -> str:
    """Slug for categories and places; Arabic letters are kept as-is."""
    return _finish((name or "").lower().strip(), _NON_LABEL_SLUG_CHARS, fallback)


def unique_slug(base_slug: str, exists: Callable[[str], bool]) -> str:
    """Return ``base_slug`` or the first free ``base_slug-N`` according to ``exists``."""
    slug = base_slug
    counter = 1
    while exists(slug):
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug
