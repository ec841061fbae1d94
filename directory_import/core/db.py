"""Database helpers for the import worker."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import extras, pool, sql

from directory_import.core.config import ConfigError, get_settings
from directory_import.models import Category, City, Country, SubArea, SubCategory

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None

# Columns the importer may write on companies; anything else is rejected.
COMPANY_COLUMNS = (
    "name",
    "slug",
    "description",
    "short_description",
    "category_id",
    "sub_category_id",
    "city_id",
    "sub_area_id",
    "country_id",
    "phone",
    "email",
    "website",
    "address",
    "rating",
    "reviews_count",
    "latitude",
    "longitude",
    "main_image",
    "services",
    "specialties",
    "is_active",
    "is_verified",
    "is_featured",
)


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise ConfigError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def _fetch_all(query: Any, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(query, params or {})
            rows = list(cur.fetchall())
        conn.rollback()
        return rows


def _fetch_one(query: Any, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(query, params or {})
            row = cur.fetchone()
        conn.rollback()
        return row


def _write(query: Any, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Run a write statement, commit, and return the RETURNING row if any."""
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(query, params)
                row = cur.fetchone() if cur.description else None
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
        return row


def _category(row: Dict[str, Any]) -> Category:
    return Category(id=str(row["id"]), slug=row["slug"], name=row["name"], icon=row.get("icon"))


def _sub_category(row: Dict[str, Any]) -> SubCategory:
    return SubCategory(
        id=str(row["id"]),
        slug=row["slug"],
        name=row["name"],
        category_id=str(row["category_id"]),
        icon=row.get("icon"),
    )


def _country(row: Dict[str, Any]) -> Country:
    return Country(
        id=str(row["id"]),
        code=row["code"],
        name=row["name"],
        companies_count=row.get("companies_count") or 0,
    )


def _city(row: Dict[str, Any]) -> City:
    return City(
        id=str(row["id"]),
        slug=row["slug"],
        name=row["name"],
        country_id=str(row["country_id"]),
        country_code=row.get("country_code"),
        companies_count=row.get("companies_count") or 0,
    )


def _sub_area(row: Dict[str, Any]) -> SubArea:
    return SubArea(
        id=str(row["id"]),
        slug=row["slug"],
        name=row["name"],
        city_id=str(row["city_id"]),
        country_id=str(row["country_id"]),
        companies_count=row.get("companies_count") or 0,
    )


class PostgresStore:
    """Persistence operations used by the import pipeline.

    Canonical entities are created with ``INSERT ... ON CONFLICT DO NOTHING``
    and re-read on conflict, so two workers racing on the same missing
    category end up sharing one row.
    """

    # ---------- Categories ----------

    def list_categories(self) -> List[Category]:
        rows = _fetch_all("SELECT id, slug, name, icon FROM categories ORDER BY created_at, id")
        return [_category(row) for row in rows]

    def find_category_by_slug(self, slug: str) -> Optional[Category]:
        row = _fetch_one("SELECT id, slug, name, icon FROM categories WHERE slug = %(slug)s", {"slug": slug})
        return _category(row) if row else None

    def create_category(self, *, slug: str, name: str, icon: str, description: str) -> Category:
        row = _write(
            """
            INSERT INTO categories (slug, name, icon, description)
            VALUES (%(slug)s, %(name)s, %(icon)s, %(description)s)
            ON CONFLICT (slug) DO NOTHING
            RETURNING id, slug, name, icon
            """,
            {"slug": slug, "name": name, "icon": icon, "description": description},
        )
        if row:
            logger.info("Created category %s (%s)", name, slug)
            return _category(row)
        existing = self.find_category_by_slug(slug)
        if existing is None:
            raise RuntimeError(f"category {slug!r} vanished after insert conflict")
        return existing

    def list_sub_categories(self) -> List[SubCategory]:
        rows = _fetch_all("SELECT id, slug, name, icon, category_id FROM sub_categories ORDER BY created_at, id")
        return [_sub_category(row) for row in rows]

    def create_sub_category(
        self, *, slug: str, name: str, category_id: str, icon: str, description: str
    ) -> SubCategory:
        params = {"slug": slug, "name": name, "category_id": category_id, "icon": icon, "description": description}
        row = _write(
            """
            INSERT INTO sub_categories (slug, name, category_id, icon, description)
            VALUES (%(slug)s, %(name)s, %(category_id)s, %(icon)s, %(description)s)
            ON CONFLICT (category_id, slug) DO NOTHING
            RETURNING id, slug, name, icon, category_id
            """,
            params,
        )
        if not row:
            row = _fetch_one(
                "SELECT id, slug, name, icon, category_id FROM sub_categories"
                " WHERE category_id = %(category_id)s AND slug = %(slug)s",
                params,
            )
            if row is None:
                raise RuntimeError(f"sub-category {slug!r} vanished after insert conflict")
        return _sub_category(row)

    # ---------- Locations ----------

    def list_countries(self) -> List[Country]:
        rows = _fetch_all("SELECT id, code, name, companies_count FROM countries ORDER BY created_at, id")
        return [_country(row) for row in rows]

    def find_country_by_code(self, code: str) -> Optional[Country]:
        row = _fetch_one("SELECT id, code, name, companies_count FROM countries WHERE code = %(code)s", {"code": code})
        return _country(row) if row else None

    def create_country(self, *, code: str, name: str, flag: Optional[str], description: str) -> Country:
        row = _write(
            """
            INSERT INTO countries (code, name, flag, description, companies_count)
            VALUES (%(code)s, %(name)s, %(flag)s, %(description)s, 0)
            ON CONFLICT (code) DO NOTHING
            RETURNING id, code, name, companies_count
            """,
            {"code": code, "name": name, "flag": flag, "description": description},
        )
        if row:
            logger.info("Created country %s (%s)", name, code)
            return _country(row)
        existing = self.find_country_by_code(code)
        if existing is None:
            raise RuntimeError(f"country {code!r} vanished after insert conflict")
        return existing

    def list_cities(self) -> List[City]:
        rows = _fetch_all(
            "SELECT id, slug, name, country_id, country_code, companies_count FROM cities ORDER BY created_at, id"
        )
        return [_city(row) for row in rows]

    def find_city_by_slug(self, slug: str) -> Optional[City]:
        row = _fetch_one(
            "SELECT id, slug, name, country_id, country_code, companies_count FROM cities WHERE slug = %(slug)s",
            {"slug": slug},
        )
        return _city(row) if row else None

    def create_city(
        self, *, slug: str, name: str, country_id: str, country_code: str, description: str
    ) -> City:
        row = _write(
            """
            INSERT INTO cities (slug, name, country_id, country_code, description, companies_count)
            VALUES (%(slug)s, %(name)s, %(country_id)s, %(country_code)s, %(description)s, 0)
            ON CONFLICT (slug) DO NOTHING
            RETURNING id, slug, name, country_id, country_code, companies_count
            """,
            {
                "slug": slug,
                "name": name,
                "country_id": country_id,
                "country_code": country_code,
                "description": description,
            },
        )
        if row:
            logger.info("Created city %s (%s)", name, slug)
            return _city(row)
        existing = self.find_city_by_slug(slug)
        if existing is None:
            raise RuntimeError(f"city {slug!r} vanished after insert conflict")
        return existing

    def list_sub_areas(self) -> List[SubArea]:
        rows = _fetch_all(
            "SELECT id, slug, name, city_id, country_id, companies_count FROM sub_areas ORDER BY created_at, id"
        )
        return [_sub_area(row) for row in rows]

    def create_sub_area(
        self,
        *,
        slug: str,
        name: str,
        city_id: str,
        country_id: str,
        city_slug: str,
        country_code: str,
        description: str,
    ) -> SubArea:
        params = {
            "slug": slug,
            "name": name,
            "city_id": city_id,
            "country_id": country_id,
            "city_slug": city_slug,
            "country_code": country_code,
            "description": description,
        }
        row = _write(
            """
            INSERT INTO sub_areas (slug, name, city_id, country_id, city_slug, country_code, description, companies_count)
            VALUES (%(slug)s, %(name)s, %(city_id)s, %(country_id)s, %(city_slug)s, %(country_code)s, %(description)s, 0)
            ON CONFLICT (city_id, slug) DO NOTHING
            RETURNING id, slug, name, city_id, country_id, companies_count
            """,
            params,
        )
        if not row:
            row = _fetch_one(
                "SELECT id, slug, name, city_id, country_id, companies_count FROM sub_areas"
                " WHERE city_id = %(city_id)s AND slug = %(slug)s",
                params,
            )
            if row is None:
                raise RuntimeError(f"sub-area {slug!r} vanished after insert conflict")
        return _sub_area(row)

    # ---------- Companies ----------

    def find_duplicate_company(self, name: str, phone: str = "", email: str = "") -> Optional[str]:
        """Return the id of a company matching the name (any case), phone or email."""
        conditions = [sql.SQL("lower(name) = lower(%(name)s)")]
        if phone:
            conditions.append(sql.SQL("phone = %(phone)s"))
        if email:
            conditions.append(sql.SQL("lower(email) = lower(%(email)s)"))
        query = sql.SQL("SELECT id FROM companies WHERE {} LIMIT 1").format(sql.SQL(" OR ").join(conditions))
        row = _fetch_one(query, {"name": name, "phone": phone, "email": email})
        return str(row["id"]) if row else None

    def company_slug_exists(self, slug: str) -> bool:
        return _fetch_one("SELECT 1 AS found FROM companies WHERE slug = %(slug)s", {"slug": slug}) is not None

    def create_company(self, values: Dict[str, Any]) -> str:
        columns = [column for column in COMPANY_COLUMNS if column in values]
        query = sql.SQL("INSERT INTO companies ({}) VALUES ({}) RETURNING id").format(
            sql.SQL(", ").join(sql.Identifier(column) for column in columns),
            sql.SQL(", ").join(sql.Placeholder(column) for column in columns),
        )
        row = _write(query, {column: values[column] for column in columns})
        company_id = str(row["id"])
        logger.debug("Inserted company %s (%s)", values.get("name"), company_id)
        return company_id

    def update_company(self, company_id: str, values: Dict[str, Any]) -> None:
        unknown = set(values) - set(COMPANY_COLUMNS)
        if unknown:
            raise ValueError(f"unknown company columns: {sorted(unknown)}")
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(column)) for column in values
        )
        query = sql.SQL("UPDATE companies SET {}, updated_at = NOW() WHERE id = %(company_id)s").format(assignments)
        _write(query, {**values, "company_id": company_id})

    def create_company_image(self, company_id: str, image_url: str, sort_order: int, alt_text: str) -> None:
        _write(
            """
            INSERT INTO company_images (company_id, image_url, sort_order, alt_text)
            VALUES (%(company_id)s, %(image_url)s, %(sort_order)s, %(alt_text)s)
            """,
            {"company_id": company_id, "image_url": image_url, "sort_order": sort_order, "alt_text": alt_text},
        )

    def create_review(
        self,
        company_id: str,
        *,
        user_name: str,
        rating: int,
        title: str,
        comment: str,
        created_at: datetime,
    ) -> None:
        _write(
            """
            INSERT INTO reviews (company_id, user_name, rating, title, comment, is_approved, is_verified, created_at)
            VALUES (%(company_id)s, %(user_name)s, %(rating)s, %(title)s, %(comment)s, TRUE, FALSE, %(created_at)s)
            """,
            {
                "company_id": company_id,
                "user_name": user_name,
                "rating": rating,
                "title": title,
                "comment": comment,
                "created_at": created_at,
            },
        )

    def review_stats(self, company_id: str) -> Tuple[float, int]:
        """Average rating and count over every stored review of the company."""
        row = _fetch_one(
            "SELECT AVG(rating) AS average, COUNT(id) AS total FROM reviews WHERE company_id = %(company_id)s",
            {"company_id": company_id},
        )
        if not row:
            return 0.0, 0
        return float(row["average"] or 0), int(row["total"] or 0)

    def create_company_tag(self, company_id: str, tag_name: str) -> None:
        _write(
            "INSERT INTO company_tags (company_id, tag_name) VALUES (%(company_id)s, %(tag_name)s)",
            {"company_id": company_id, "tag_name": tag_name},
        )
