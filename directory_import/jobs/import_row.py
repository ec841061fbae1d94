"""Drive a single CSV row through the company import pipeline."""

import logging
from typing import Any, List, Optional, Tuple

from directory_import.core.config import Settings, get_settings
from directory_import.etl.normalize import normalize_row, parse_review_date
from directory_import.etl.slugs import slugify_company_name, unique_slug
from directory_import.etl.validate import validate_company
from directory_import.models import (
    Category,
    ImportResult,
    ImportSettings,
    Location,
    NormalizedCompany,
    RawImportRow,
    ReviewInput,
    StageResult,
)
from directory_import.resolvers.category import CategoryResolver
from directory_import.resolvers.context import ResolverContext
from directory_import.resolvers.location import LocationResolver
from directory_import.vendors.images import ImageDownloader

logger = logging.getLogger(__name__)

MAX_REVIEWS = 10
MAX_TAGS = 10
SHORT_DESCRIPTION_LENGTH = 150
REVIEW_TITLE_LENGTH = 50

NAME_REQUIRED = "اسم الشركة مطلوب - لا يمكن إنشاء شركة بدون اسم"
ALREADY_EXISTS = "الشركة موجودة مسبقاً - تم العثور على شركة بنفس الاسم أو رقم الهاتف في قاعدة البيانات"
VALIDATION_FAILED = "فشل التحقق من البيانات - {error}"
CATEGORY_FAILED = 'فئة غير صالحة أو غير موجودة - الفئة "{category}" غير متوفرة في النظام'
LOCATION_FAILED = (
    'لا يمكن تحديد الموقع - فشل في ربط العنوان "{address}" أو الدولة/المدينة "{country}/{city}" مع قاعدة البيانات'
)
UNEXPECTED_ERROR = "خطأ غير متوقع"
HERO_ALT_TEXT = "الصورة الرئيسية"
GALLERY_ALT_TEXT = "صورة {number}"
GENERAL_REVIEW_TITLE = "مراجعة عامة"


class CompanyImporter:
    """Runs the import stages for one row at a time.

    The importer is reusable across rows; all rows of one run should share
    the same ``ResolverContext`` so newly created categories and locations
    are visible to later rows.
    """

    def __init__(
        self,
        store: Any,
        context: Optional[ResolverContext] = None,
        downloader: Optional[ImageDownloader] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.context = context or ResolverContext(store)
        self.categories = CategoryResolver(self.context)
        self.locations = LocationResolver(
            self.context,
            default_country=self.settings.default_country,
            default_city=self.settings.default_city,
        )
        self._downloader = downloader

    @property
    def downloader(self) -> ImageDownloader:
        if self._downloader is None:
            self._downloader = ImageDownloader(self.settings)
        return self._downloader

    def process_row(self, raw_row: RawImportRow, settings: ImportSettings, row_number: int) -> ImportResult:
        try:
            return self._process(raw_row, settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Row %d failed unexpectedly: %s", row_number, exc)
            return ImportResult(success=False, error=str(exc) or UNEXPECTED_ERROR)

    def _process(self, raw_row: RawImportRow, settings: ImportSettings) -> ImportResult:
        company = normalize_row(raw_row)

        if not company.name.strip():
            return ImportResult(success=False, error=NAME_REQUIRED)

        if settings.skip_duplicates and self.is_duplicate(company):
            logger.info("Skipping duplicate company %r", company.name)
            return ImportResult(success=False, skipped=True, error=ALREADY_EXISTS)

        validation = self.validate(company, settings)
        if not validation.ok:
            return ImportResult(success=False, error=validation.error)

        category = self.resolve_category(company, settings)
        if not category.ok:
            return ImportResult(success=False, error=category.error)

        location = self.resolve_location(company, settings)
        if not location.ok:
            return ImportResult(success=False, error=location.error)

        sub_category_id = self._optional_sub_category(company, category.value, settings)
        sub_area_id = self._optional_sub_area(company, location.value, settings)

        company_id = self.create_company(company, category.value, location.value, sub_category_id, sub_area_id)

        downloaded = failed = 0
        if settings.download_images and (company.images or company.hero_image):
            downloaded, failed = self.attach_images(company_id, company)

        if company.reviews:
            self.add_reviews(company_id, company.reviews)

        if company.tags:
            self.add_tags(company_id, company.tags)

        logger.info("Imported %r as %s (%d images, %d failed)", company.name, company_id, downloaded, failed)
        return ImportResult(success=True, company_id=company_id, images_downloaded=downloaded, images_failed=failed)

    # ---------- Stages ----------

    def is_duplicate(self, company: NormalizedCompany) -> bool:
        return self.store.find_duplicate_company(company.name, company.phone, company.email) is not None

    def validate(self, company: NormalizedCompany, settings: ImportSettings) -> StageResult[None]:
        result = validate_company(company, settings)
        if not result.is_valid:
            return StageResult.failure(VALIDATION_FAILED.format(error=result.error))
        return StageResult.success()

    def resolve_category(self, company: NormalizedCompany, settings: ImportSettings) -> StageResult[Category]:
        category = self.categories.resolve(company.category, settings.create_missing_categories)
        if category is None:
            return StageResult.failure(CATEGORY_FAILED.format(category=company.category))
        return StageResult.success(category)

    def resolve_location(self, company: NormalizedCompany, settings: ImportSettings) -> StageResult[Location]:
        location = self.locations.locate(company, settings.create_missing_cities)
        if location is None:
            return StageResult.failure(
                LOCATION_FAILED.format(address=company.address, country=company.country, city=company.city)
            )
        return StageResult.success(location)

    def _optional_sub_category(
        self, company: NormalizedCompany, category: Category, settings: ImportSettings
    ) -> Optional[str]:
        if not company.sub_category:
            return None
        sub_category = self.categories.resolve_sub_category(
            company.sub_category, category.id, settings.create_missing_categories
        )
        if sub_category is None:
            logger.warning("Sub-category %r not found; continuing without it", company.sub_category)
            return None
        return sub_category.id

    def _optional_sub_area(self, company: NormalizedCompany, location: Location, settings: ImportSettings) -> Optional[str]:
        if not company.sub_area:
            return None
        sub_area = self.locations.resolve_sub_area(
            company.sub_area, location.city, location.country, settings.create_missing_cities
        )
        if sub_area is None:
            logger.warning("Sub-area %r not found; continuing without it", company.sub_area)
            return None
        return sub_area.id

    def create_company(
        self,
        company: NormalizedCompany,
        category: Category,
        location: Location,
        sub_category_id: Optional[str] = None,
        sub_area_id: Optional[str] = None,
    ) -> str:
        slug = unique_slug(slugify_company_name(company.name), self.store.company_slug_exists)
        values = {
            "name": company.name,
            "slug": slug,
            "description": company.description or f"{company.name} اختصاص في {company.category}",
            "short_description": company.description[:SHORT_DESCRIPTION_LENGTH] if company.description else None,
            "category_id": category.id,
            "sub_category_id": sub_category_id,
            "city_id": location.city.id,
            "sub_area_id": sub_area_id,
            "country_id": location.country.id,
            "phone": company.phone or None,
            "email": company.email or None,
            "website": company.website or None,
            "address": company.address or None,
            "rating": min(max(company.rating or 0.0, 0.0), 5.0),
            "reviews_count": company.review_count or 0,
            "latitude": company.latitude,
            "longitude": company.longitude,
            "main_image": None,
            "services": company.services,
            "specialties": company.specialties,
            "is_active": True,
            "is_verified": False,
            "is_featured": False,
        }
        company_id = self.store.create_company(values)
        logger.debug("Created company %s with slug %s", company_id, slug)
        return company_id

    def attach_images(self, company_id: str, company: NormalizedCompany) -> Tuple[int, int]:
        """Download the hero and gallery images one at a time.

        Returns ``(downloaded, failed)``. The hero image, when it downloads,
        takes sort order 0 and becomes the main image; otherwise the first
        stored gallery image does.
        """
        downloaded = failed = 0
        main_image: Optional[str] = None

        if company.hero_image:
            main_image = self._store_image(company_id, company.hero_image, 0, HERO_ALT_TEXT)
            if main_image:
                downloaded += 1
            else:
                failed += 1

        offset = 1 if main_image else 0
        gallery = [url for url in company.images if url and url != company.hero_image]
        for position, url in enumerate(gallery):
            stored = self._store_image(
                company_id, url, offset + position, GALLERY_ALT_TEXT.format(number=position + 1)
            )
            if not stored:
                failed += 1
                continue
            if main_image is None:
                main_image = stored
            downloaded += 1

        if main_image:
            try:
                self.store.update_company(company_id, {"main_image": main_image})
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to set main image for %s: %s", company_id, exc)
        return downloaded, failed

    def _store_image(self, company_id: str, url: str, sort_order: int, alt_text: str) -> Optional[str]:
        """Download one image and record it; returns the stored path or None on any failure."""
        try:
            result = self.downloader.download(url, company_id, sort_order)
            if not result.success:
                logger.warning("Image %s for %s not downloaded: %s", url, company_id, result.error)
                return None
            self.store.create_company_image(company_id, result.local_path, sort_order, alt_text)
            return result.local_path
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to store image %s for %s: %s", url, company_id, exc)
            return None

    def add_reviews(self, company_id: str, reviews: List[ReviewInput]) -> None:
        for review in reviews[:MAX_REVIEWS]:
            rating = review.rating if 1 <= review.rating <= 5 else 5
            text = review.text or ""
            title = review.title or (f"{text[:REVIEW_TITLE_LENGTH]}..." if text else GENERAL_REVIEW_TITLE)
            try:
                self.store.create_review(
                    company_id,
                    user_name=review.author,
                    rating=int(round(rating)),
                    title=title,
                    comment=text,
                    created_at=parse_review_date(review.date),
                )
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to add review by %r to %s: %s", review.author, company_id, exc)

        average, count = self.store.review_stats(company_id)
        self.store.update_company(company_id, {"rating": average or 0.0, "reviews_count": count or 0})

    def add_tags(self, company_id: str, tags: List[str]) -> int:
        added = 0
        for tag in tags[:MAX_TAGS]:
            name = tag.strip()
            if not name:
                continue
            try:
                self.store.create_company_tag(company_id, name)
                added += 1
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to add tag %r to %s: %s", name, company_id, exc)
        return added
