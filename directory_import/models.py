"""Core data models shared by the company import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")

RawImportRow = Dict[str, Any]

_SETTINGS_KEYS = {
    "downloadImages": "download_images",
    "createMissingCategories": "create_missing_categories",
    "createMissingCities": "create_missing_cities",
    "skipDuplicates": "skip_duplicates",
    "validateEmails": "validate_emails",
    "validatePhones": "validate_phones",
    "batchSize": "batch_size",
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


@dataclass(slots=True)
class ImportSettings:
    """Per-run switches chosen by the operator when starting an import."""

    download_images: bool = True
    create_missing_categories: bool = True
    create_missing_cities: bool = True
    skip_duplicates: bool = True
    validate_emails: bool = True
    validate_phones: bool = True
    batch_size: int = 10

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "ImportSettings":
        """Build settings from either snake_case or the web layer's camelCase keys."""
        settings = cls()
        for key, value in (payload or {}).items():
            attr = _SETTINGS_KEYS.get(key, key)
            if attr == "batch_size":
                try:
                    settings.batch_size = max(1, int(value))
                except (TypeError, ValueError):
                    continue
            elif attr in cls.__dataclass_fields__:
                setattr(settings, attr, _as_bool(value))
        return settings


@dataclass(slots=True)
class ImportRow:
    """A CSV record with source headers mapped onto pipeline field names."""

    name: str = ""
    rating_text: str = ""
    category: str = ""
    sub_category: str = ""
    address: str = ""
    country: str = ""
    city: str = ""
    sub_area: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    description: str = ""
    images: str = ""
    hero_image: str = ""
    reviews: str = ""
    tags: str = ""


@dataclass(slots=True)
class ReviewInput:
    author: str
    text: str
    rating: int
    date: str
    title: Optional[str] = None


@dataclass(slots=True)
class NormalizedCompany:
    """Canonical view of one CSV row, ready for validation and persistence."""

    name: str
    category: str = ""
    sub_category: str = ""
    address: str = ""
    country: str = ""
    city: str = ""
    sub_area: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    description: str = ""
    rating: float = 0.0
    review_count: int = 0
    images: List[str] = field(default_factory=list)
    hero_image: str = ""
    reviews: List[ReviewInput] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    specialties: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(slots=True)
class Category:
    id: str
    slug: str
    name: str
    icon: Optional[str] = None


@dataclass(slots=True)
class SubCategory:
    id: str
    slug: str
    name: str
    category_id: str
    icon: Optional[str] = None


@dataclass(slots=True)
class Country:
    id: str
    code: str
    name: str
    companies_count: int = 0


@dataclass(slots=True)
class City:
    id: str
    slug: str
    name: str
    country_id: str
    country_code: Optional[str] = None
    companies_count: int = 0


@dataclass(slots=True)
class SubArea:
    id: str
    slug: str
    name: str
    city_id: str
    country_id: str
    companies_count: int = 0


@dataclass(slots=True)
class Location:
    country: Country
    city: City


@dataclass(slots=True)
class StageResult(Generic[T]):
    """Outcome of one pipeline stage: either a value or a human-readable error."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StageResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "StageResult[T]":
        return cls(ok=False, error=error)


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ImageDownloadResult:
    success: bool
    original_url: str
    local_path: Optional[str] = None
    filename: Optional[str] = None
    size: int = 0
    error: Optional[str] = None


@dataclass(slots=True)
class StorageInfo:
    total_files: int
    total_size: int
    total_size_mb: float


@dataclass(slots=True)
class ImportResult:
    """Per-row outcome handed back to the batch driver."""

    success: bool
    skipped: bool = False
    error: Optional[str] = None
    company_id: Optional[str] = None
    images_downloaded: int = 0
    images_failed: int = 0

    @property
    def status(self) -> str:
        if self.success:
            return "success"
        return "skipped" if self.skipped else "failed"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.skipped:
            payload["skipped"] = True
        if self.error:
            payload["error"] = self.error
        if self.company_id:
            payload["companyId"] = self.company_id
            payload["imagesDownloaded"] = self.images_downloaded
            payload["imagesFailed"] = self.images_failed
        return payload


@dataclass(slots=True)
class RowIssue:
    row: int
    company_name: str
    message: str


@dataclass(slots=True)
class ImportStats:
    total_rows: int = 0
    processed_rows: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    skipped_rows: int = 0
    downloaded_images: int = 0
    failed_images: int = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
