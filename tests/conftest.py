import itertools
import sys
from pathlib import Path

import pytest

# Ensure `directory_import` is importable when running pytest from the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from directory_import.core.config import Settings  # noqa: E402
from directory_import.models import Category, City, Country, SubArea, SubCategory  # noqa: E402


class FakeStore:
    """In-memory stand-in for PostgresStore with the same conflict rules."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.categories = []
        self.sub_categories = []
        self.countries = []
        self.cities = []
        self.sub_areas = []
        self.companies = {}
        self.images = []
        self.reviews = []
        self.tags = []
        self.failing_tags = set()
        self.calls = []

    def _next_id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    # Categories
    def list_categories(self):
        self.calls.append("list_categories")
        return list(self.categories)

    def find_category_by_slug(self, slug):
        return next((c for c in self.categories if c.slug == slug), None)

    def create_category(self, *, slug, name, icon, description):
        existing = self.find_category_by_slug(slug)
        if existing:
            return existing
        category = Category(id=self._next_id("cat"), slug=slug, name=name, icon=icon)
        self.categories.append(category)
        return category

    def list_sub_categories(self):
        return list(self.sub_categories)

    def create_sub_category(self, *, slug, name, category_id, icon, description):
        for sub in self.sub_categories:
            if sub.category_id == category_id and sub.slug == slug:
                return sub
        sub = SubCategory(id=self._next_id("sub"), slug=slug, name=name, category_id=category_id, icon=icon)
        self.sub_categories.append(sub)
        return sub

    # Locations
    def list_countries(self):
        return list(self.countries)

    def find_country_by_code(self, code):
        return next((c for c in self.countries if c.code == code), None)

    def create_country(self, *, code, name, flag, description):
        existing = self.find_country_by_code(code)
        if existing:
            return existing
        country = Country(id=self._next_id("country"), code=code, name=name)
        self.countries.append(country)
        return country

    def list_cities(self):
        return list(self.cities)

    def find_city_by_slug(self, slug):
        return next((c for c in self.cities if c.slug == slug), None)

    def create_city(self, *, slug, name, country_id, country_code, description):
        existing = self.find_city_by_slug(slug)
        if existing:
            return existing
        city = City(id=self._next_id("city"), slug=slug, name=name, country_id=country_id, country_code=country_code)
        self.cities.append(city)
        return city

    def list_sub_areas(self):
        return list(self.sub_areas)

    def create_sub_area(self, *, slug, name, city_id, country_id, city_slug, country_code, description):
        for area in self.sub_areas:
            if area.city_id == city_id and area.slug == slug:
                return area
        area = SubArea(id=self._next_id("area"), slug=slug, name=name, city_id=city_id, country_id=country_id)
        self.sub_areas.append(area)
        return area

    # Companies
    def find_duplicate_company(self, name, phone="", email=""):
        for company_id, values in self.companies.items():
            if values["name"].lower() == name.lower():
                return company_id
            if phone and values.get("phone") == phone:
                return company_id
            if email and values.get("email") == email:
                return company_id
        return None

    def company_slug_exists(self, slug):
        return any(values["slug"] == slug for values in self.companies.values())

    def create_company(self, values):
        company_id = self._next_id("company")
        self.companies[company_id] = dict(values)
        return company_id

    def update_company(self, company_id, values):
        self.companies[company_id].update(values)

    def create_company_image(self, company_id, image_url, sort_order, alt_text):
        self.images.append(
            {"company_id": company_id, "image_url": image_url, "sort_order": sort_order, "alt_text": alt_text}
        )

    def create_review(self, company_id, *, user_name, rating, title, comment, created_at):
        self.reviews.append(
            {
                "company_id": company_id,
                "user_name": user_name,
                "rating": rating,
                "title": title,
                "comment": comment,
                "created_at": created_at,
            }
        )

    def review_stats(self, company_id):
        ratings = [review["rating"] for review in self.reviews if review["company_id"] == company_id]
        if not ratings:
            return 0.0, 0
        return sum(ratings) / len(ratings), len(ratings)

    def create_company_tag(self, company_id, tag_name):
        if tag_name in self.failing_tags:
            raise RuntimeError(f"tag {tag_name} rejected")
        self.tags.append({"company_id": company_id, "tag_name": tag_name})


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def app_settings(tmp_path):
    return Settings(database_url="", upload_dir=str(tmp_path / "uploads"))
