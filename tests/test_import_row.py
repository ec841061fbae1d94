import json

import pytest

from directory_import.etl.normalize import extract_reviews
from directory_import.jobs import import_row
from directory_import.jobs.import_row import CompanyImporter
from directory_import.models import Category, ImageDownloadResult, ImportSettings


class DummyDownloader:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def download(self, url, context_id, index):
        self.calls.append((url, context_id, index))
        if url in self.failing:
            return ImageDownloadResult(success=False, original_url=url, error="timed out")
        name = f"{context_id}_{index}.jpg"
        return ImageDownloadResult(
            success=True, original_url=url, local_path=f"/uploads/companies/{name}", filename=name, size=10
        )


@pytest.fixture
def downloader():
    return DummyDownloader()


@pytest.fixture
def importer(store, downloader, app_settings):
    return CompanyImporter(store, downloader=downloader, settings=app_settings)


def make_row(**overrides):
    row = {"Nom": "Acme", "Catégorie": "restaurant", "Adresse": "Damascus", "Reviews": "[]"}
    row.update(overrides)
    return row


def test_end_to_end_row(store, importer, downloader):
    row = {
        "Nom": "شركة الاختبار",
        "Catégorie": "restaurant",
        "Adresse": "Damascus",
        "Téléphone": "0999123456",
        "Images": "http://x/1.jpg,http://x/2.jpg",
        "Reviews": "[]",
    }

    result = importer.process_row(row, ImportSettings(), 2)

    assert result.success is True
    assert result.images_downloaded == 2
    company = store.companies[result.company_id]
    assert company["phone"] == "+963999123456"
    assert company["slug"] == "shrkh-al-akhtbar"
    assert company["category_id"] == store.categories[0].id
    assert store.categories[0].slug == "food"
    assert [c.code for c in store.countries] == ["sy"]
    assert [c.slug for c in store.cities] == ["damascus"]
    assert company["is_active"] is True and company["is_verified"] is False
    assert company["main_image"] == store.images[0]["image_url"]
    assert [image["sort_order"] for image in store.images] == [0, 1]
    assert store.reviews == []
    assert result.to_dict() == {
        "success": True,
        "companyId": result.company_id,
        "imagesDownloaded": 2,
        "imagesFailed": 0,
    }


def test_missing_name_fails_before_anything_else(store, importer):
    result = importer.process_row(make_row(Nom="   "), ImportSettings(), 2)

    assert result.success is False
    assert result.error == import_row.NAME_REQUIRED
    assert store.companies == {}


def test_duplicate_row_is_skipped_second_time(store, importer):
    first = importer.process_row(make_row(), ImportSettings(), 2)
    second = importer.process_row(make_row(Nom="ACME"), ImportSettings(), 3)

    assert first.success is True
    assert second.skipped is True
    assert second.status == "skipped"
    assert second.error == import_row.ALREADY_EXISTS
    assert len(store.companies) == 1


def test_duplicate_detection_matches_phone_or_email(store, importer):
    importer.process_row(make_row(Téléphone="0999123456", Email="hi@acme.test"), ImportSettings(), 2)

    by_phone = importer.process_row(make_row(Nom="Other", Téléphone="00963999123456"), ImportSettings(), 3)
    by_email = importer.process_row(make_row(Nom="Third", Email="HI@acme.test"), ImportSettings(), 4)

    assert by_phone.skipped is True
    assert by_email.skipped is True


def test_duplicates_allowed_get_suffixed_slugs(store, importer):
    settings = ImportSettings(skip_duplicates=False)

    for line in range(3):
        assert importer.process_row(make_row(), settings, line + 2).success is True

    assert sorted(values["slug"] for values in store.companies.values()) == ["acme", "acme-1", "acme-2"]


def test_validation_failure_is_reported(importer):
    result = importer.process_row(make_row(Email="broken"), ImportSettings(), 2)

    assert result.success is False
    assert result.error.startswith("فشل التحقق من البيانات - ")


def test_unknown_category_without_creation_fails(importer):
    result = importer.process_row(make_row(**{"Catégorie": "Bakery"}), ImportSettings(create_missing_categories=False), 2)

    assert result.success is False
    assert '"Bakery"' in result.error


def test_unresolvable_location_fails(importer):
    result = importer.process_row(make_row(), ImportSettings(create_missing_cities=False), 2)

    assert result.success is False
    assert result.error.startswith("لا يمكن تحديد الموقع")


def test_partial_image_failure_keeps_company(store, app_settings):
    downloader = DummyDownloader(failing={"http://x/2.jpg"})
    importer = CompanyImporter(store, downloader=downloader, settings=app_settings)

    result = importer.process_row(make_row(Images="http://x/1.jpg,http://x/2.jpg,http://x/3.jpg"), ImportSettings(), 2)

    assert result.success is True
    assert (result.images_downloaded, result.images_failed) == (2, 1)
    assert len(store.images) == 2


def test_images_skipped_when_disabled(store, importer, downloader):
    result = importer.process_row(make_row(Images="http://x/1.jpg"), ImportSettings(download_images=False), 2)

    assert result.success is True
    assert downloader.calls == []
    assert store.images == []


def test_hero_image_goes_first_and_is_not_downloaded_twice(store, importer, downloader):
    row = make_row(HeroImage="http://x/hero.jpg", Images="http://x/hero.jpg,http://x/1.jpg")

    result = importer.process_row(row, ImportSettings(), 2)

    assert result.images_downloaded == 2
    assert [call[0] for call in downloader.calls] == ["http://x/hero.jpg", "http://x/1.jpg"]
    assert [(image["sort_order"], image["alt_text"]) for image in store.images] == [
        (0, import_row.HERO_ALT_TEXT),
        (1, "صورة 1"),
    ]
    assert store.companies[result.company_id]["main_image"] == store.images[0]["image_url"]


def test_failed_hero_falls_back_to_first_gallery_image(store, app_settings):
    downloader = DummyDownloader(failing={"http://x/hero.jpg"})
    importer = CompanyImporter(store, downloader=downloader, settings=app_settings)

    result = importer.process_row(make_row(HeroImage="http://x/hero.jpg", Images="http://x/1.jpg"), ImportSettings(), 2)

    assert (result.images_downloaded, result.images_failed) == (1, 1)
    assert store.images[0]["sort_order"] == 0
    assert store.companies[result.company_id]["main_image"] == store.images[0]["image_url"]


def test_review_aggregates_are_recomputed_from_all_reviews(store, importer):
    reviews = [{"author": "A", "text": "t" * 60, "rating": r, "date": "2 years ago"} for r in (5, 4, 3)]
    result = importer.process_row(make_row(Reviews=json.dumps(reviews)), ImportSettings(), 2)

    company = store.companies[result.company_id]
    assert (company["rating"], company["reviews_count"]) == (4.0, 3)
    assert store.reviews[0]["title"] == "t" * 50 + "..."

    importer.add_reviews(result.company_id, extract_reviews(json.dumps([{"text": "", "rating": 2}])))
    assert (company["rating"], company["reviews_count"]) == (3.5, 4)
    assert store.reviews[-1]["title"] == import_row.GENERAL_REVIEW_TITLE


def test_reviews_and_tags_are_capped(store, importer):
    reviews = [{"author": str(i), "text": "ok", "rating": 9} for i in range(12)]
    tags = ",".join(f"tag{i}" for i in range(12))

    result = importer.process_row(make_row(Reviews=json.dumps(reviews), Tags=tags), ImportSettings(), 2)

    assert len(store.reviews) == 10
    assert {review["rating"] for review in store.reviews} == {5}
    assert len(store.tags) == 10
    assert result.success is True


def test_failing_tag_is_logged_and_skipped(store, importer, caplog):
    store.failing_tags.add("bad")

    with caplog.at_level("ERROR"):
        result = importer.process_row(make_row(Tags="good;bad;fine"), ImportSettings(), 2)

    assert result.success is True
    assert [tag["tag_name"] for tag in store.tags] == ["good", "fine"]
    assert "bad" in " ".join(caplog.messages)


def test_sub_category_and_sub_area_are_optional(store, importer):
    result = importer.process_row(
        make_row(SubCategory="Grill", SubArea="Mezzeh"), ImportSettings(), 2
    )
    company = store.companies[result.company_id]
    assert company["sub_category_id"] == store.sub_categories[0].id
    assert company["sub_area_id"] == store.sub_areas[0].id

    strict = ImportSettings(skip_duplicates=False, create_missing_categories=False, create_missing_cities=False)
    result = importer.process_row(make_row(SubCategory="Pastry", SubArea="Malki"), strict, 3)
    company = store.companies[result.company_id]
    assert result.success is True
    assert company["sub_category_id"] is None
    assert company["sub_area_id"] is None


def test_existing_category_precedence_is_respected(store, importer):
    store.categories.extend([Category("1", "tech-solutions", "Tech Solutions"), Category("2", "technology", "Technology")])

    result = importer.process_row(make_row(**{"Catégorie": "technology"}), ImportSettings(), 2)

    assert store.companies[result.company_id]["category_id"] == "2"


def test_store_errors_become_failed_results(store, importer, monkeypatch):
    def explode(values):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(store, "create_company", explode)

    result = importer.process_row(make_row(), ImportSettings(), 7)

    assert result.success is False
    assert result.skipped is False
    assert result.error == "insert failed"


def test_image_store_error_does_not_fail_the_company(store, importer, monkeypatch, caplog):
    def reject(company_id, image_url, sort_order, alt_text):
        raise RuntimeError("image insert failed")

    monkeypatch.setattr(store, "create_company_image", reject)

    with caplog.at_level("ERROR"):
        result = importer.process_row(make_row(Images="http://x/1.jpg,http://x/2.jpg"), ImportSettings(), 2)

    assert result.success is True
    assert (result.images_downloaded, result.images_failed) == (0, 2)
    assert len(store.companies) == 1
    assert store.companies[result.company_id]["main_image"] is None
    assert "image insert failed" in " ".join(caplog.messages)


def test_main_image_update_error_keeps_the_row(store, importer, monkeypatch):
    original_update = store.update_company

    def update(company_id, values):
        if "main_image" in values:
            raise RuntimeError("update failed")
        original_update(company_id, values)

    monkeypatch.setattr(store, "update_company", update)

    result = importer.process_row(make_row(Images="http://x/1.jpg"), ImportSettings(), 2)

    assert result.success is True
    assert result.images_downloaded == 1
    assert len(store.images) == 1
