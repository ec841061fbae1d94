"""Row-level checks applied before any side effects happen."""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

from directory_import.models import ImportSettings, NormalizedCompany, ValidationResult

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 200
EMAIL_MAX_LENGTH = 254
ADDRESS_MAX_LENGTH = 500
DESCRIPTION_MAX_LENGTH = 1000

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_FORMATTING = re.compile(r"[\s\-().\[\]]")
_PHONE_ALLOWED = re.compile(r"^[+\d]+$")


def validate_email(email: str) -> Optional[str]:
    """Return an error message for a malformed address, or None."""
    if not EMAIL_REGEX.match(email):
        return "تنسيق البريد الإلكتروني غير صحيح"
    if len(email) > EMAIL_MAX_LENGTH:
        return "البريد الإلكتروني طويل جداً"
    return None


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """Return an error message for an implausible phone number, or None.

    International numbers must be 8-17 characters long including the ``+``;
    Syrian ``+963`` numbers exactly 13. Local numbers must be 7-15 digits.
    """
    if not phone or not phone.strip():
        return None

    clean = _PHONE_FORMATTING.sub("", phone)
    if not _PHONE_ALLOWED.match(clean):
        return "رقم الهاتف يحتوي على رموز غير صحيحة"

    if clean.startswith("+"):
        if len(clean) < 8 or len(clean) > 17:
            return "طول رقم الهاتف الدولي غير صحيح (8-17 رقم)"
        if clean.startswith("+963") and len(clean) != 13:
            return "رقم الهاتف السوري يجب أن يكون 13 رقم (+963xxxxxxxxx)"
        return None

    if len(clean) < 7 or len(clean) > 15:
        return "طول رقم الهاتف غير صحيح (7-15 رقم)"
    return None


def _website_looks_valid(website: str) -> bool:
    url = website if website.startswith(("http://", "https://")) else f"https://{website}"
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and len(parsed.hostname or "") >= 3


def validate_company(data: NormalizedCompany, settings: ImportSettings) -> ValidationResult:
    """Accept or reject a normalized row. The first failing rule wins."""
    name = data.name or ""
    if len(name.strip()) < NAME_MIN_LENGTH:
        return ValidationResult(is_valid=False, error="اسم الشركة قصير جداً")
    if len(name) > NAME_MAX_LENGTH:
        return ValidationResult(is_valid=False, error="اسم الشركة طويل جداً")

    if data.email and settings.validate_emails:
        error = validate_email(data.email)
        if error:
            return ValidationResult(is_valid=False, error=error)

    if data.phone and settings.validate_phones:
        error = validate_phone(data.phone)
        if error:
            return ValidationResult(is_valid=False, error=error)

    warnings = []
    if data.website and not _website_looks_valid(data.website):
        warnings.append("رابط الموقع غير صالح")
    if data.rating and not 0 <= data.rating <= 5:
        warnings.append("التقييم خارج النطاق المسموح (0-5)")
    if data.address and len(data.address) > ADDRESS_MAX_LENGTH:
        warnings.append("العنوان طويل جداً، سيتم اقتطاعه")
    if data.description and len(data.description) > DESCRIPTION_MAX_LENGTH:
        warnings.append("الوصف طويل جداً، سيتم اقتطاعه")

    for warning in warnings:
        logger.info("Validation warning for %s: %s", name, warning)
    return ValidationResult(is_valid=True, warnings=warnings)
