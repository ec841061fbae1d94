import json
from datetime import datetime, timezone

from directory_import.etl import normalize


def test_map_columns_prefers_first_non_empty_alias():
    row = normalize.map_columns(
        {"Nom": " Acme ", "Images": "", "Photos": "http://x/1.jpg", "country": "Syria", "Sub Area": "Mezzeh"}
    )

    assert row.name == "Acme"
    assert row.images == "http://x/1.jpg"
    assert row.country == "Syria"
    assert row.sub_area == "Mezzeh"
    assert row.email == ""


def test_extract_rating():
    assert normalize.extract_rating("4.5 (120)") == (4.5, 120)
    assert normalize.extract_rating("3.0") == (3.0, 0)
    assert normalize.extract_rating("") == (0.0, 0)
    assert normalize.extract_rating(None) == (0.0, 0)


def test_extract_images_caps_http_urls():
    urls = [f"http://x/{i}.jpg" for i in range(15)]
    assert len(normalize.extract_images(",".join(urls))) == 10

    mixed = "ftp://x/a.jpg; http://x/1.jpg, not-a-url ,https://x/2.png"
    assert normalize.extract_images(mixed) == ["http://x/1.jpg", "https://x/2.png"]


def test_extract_reviews_defaults_and_bad_json(caplog):
    payload = json.dumps([{"text": "Great", "rating": "4 stars"}, {"author": "Sam", "rating": 0}, "junk"])
    reviews = normalize.extract_reviews(payload)

    assert len(reviews) == 2
    assert reviews[0].author == normalize.UNKNOWN_AUTHOR
    assert reviews[0].rating == 4
    assert reviews[1].rating == 5

    with caplog.at_level("WARNING"):
        assert normalize.extract_reviews("{not json") == []
    assert normalize.extract_reviews("[]") == []
    assert normalize.extract_reviews('{"author": "x"}') == []


def test_normalize_phone_rules():
    assert normalize.normalize_phone("0999123456") == "+963999123456"
    assert normalize.normalize_phone("00963 11 222 3333") == "+963112223333"
    assert normalize.normalize_phone("963112223333") == "+963112223333"
    assert normalize.normalize_phone("999123456") == "+963999123456"
    assert normalize.normalize_phone("0791234567") == "+962791234567"
    assert normalize.normalize_phone("0501234567") == "+966501234567"
    assert normalize.normalize_phone("501234567") == "+971501234567"
    assert normalize.normalize_phone("2223333") == "+963112223333"


def test_normalize_phone_returns_original_on_failure():
    for value in ("", "abc", "12", "+12", "call us", "٠٩٩٩"):
        assert normalize.normalize_phone(value) == value


def test_generate_description_and_services():
    assert normalize.generate_description("Acme", "Restaurant") == "Acme - مطعم يقدم أشهى الأطباق والوجبات"
    assert normalize.generate_description("Acme", "Bakery") == "Acme - شركة Acme متخصصة في Bakery"
    assert normalize.generate_services("clinic") == ["فحوصات طبية", "استشارات طبية", "علاج متخصص"]
    assert normalize.generate_services("unknown") == []


def test_parse_review_date_relative_and_literal():
    now = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

    assert normalize.parse_review_date("2 years ago", now) == datetime(2022, 6, 15, 12, 0, tzinfo=timezone.utc)
    assert normalize.parse_review_date("a month ago", now) == datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
    assert normalize.parse_review_date("3 days ago", now) == datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)
    assert normalize.parse_review_date("2023-01-02", now) == datetime(2023, 1, 2, tzinfo=timezone.utc)
    assert normalize.parse_review_date("", now) == now
    assert normalize.parse_review_date("whenever", now) == now


def test_normalize_row_builds_company():
    company = normalize.normalize_row(
        {
            "Nom": "Acme",
            "Note": "4.2 (31)",
            "Catégorie": "restaurant",
            "Adresse": "Damascus",
            "Téléphone": "0999123456",
            "Email": "Info@Acme.TEST",
            "Images": "http://x/1.jpg,http://x/2.jpg",
            "HeroImage": "not-a-url",
            "Tags": "wifi; parking",
            "Reviews": "[]",
        }
    )

    assert company.name == "Acme"
    assert company.rating == 4.2
    assert company.review_count == 31
    assert company.phone == "+963999123456"
    assert company.email == "info@acme.test"
    assert company.images == ["http://x/1.jpg", "http://x/2.jpg"]
    assert company.hero_image == ""
    assert company.tags == ["wifi", "parking"]
    assert company.services[0] == "تناول في المطعم"
    assert company.description.startswith("Acme - ")


def test_extract_reviews_rejects_non_finite_numbers():
    assert normalize.extract_reviews('[{"rating": NaN}]') == []
    assert normalize.extract_reviews('[{"rating": Infinity}]') == []

    reviews = normalize.extract_reviews('[{"rating": 1e999}]')
    assert [review.rating for review in reviews] == [5]

    company = normalize.normalize_row({"Nom": "Acme", "Reviews": '[{"rating": -Infinity}]'})
    assert company.reviews == []
