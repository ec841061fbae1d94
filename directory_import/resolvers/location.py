"""Map free-text country, city and sub-area names onto canonical locations."""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from directory_import.etl.slugs import slugify_label
from directory_import.models import City, Country, Location, NormalizedCompany, SubArea
from directory_import.resolvers.context import ResolverContext
from directory_import.resolvers.matching import find_match

logger = logging.getLogger(__name__)

# Country names (English and Arabic, lower-cased) -> ISO code, Arabic name, flag.
COUNTRY_MAPPINGS: Dict[str, Dict[str, str]] = {
    "syria": {"code": "sy", "name": "سوريا", "flag": "🇸🇾"},
    "سوريا": {"code": "sy", "name": "سوريا", "flag": "🇸🇾"},
    "سورية": {"code": "sy", "name": "سوريا", "flag": "🇸🇾"},
    "lebanon": {"code": "lb", "name": "لبنان", "flag": "🇱🇧"},
    "لبنان": {"code": "lb", "name": "لبنان", "flag": "🇱🇧"},
    "jordan": {"code": "jo", "name": "الأردن", "flag": "🇯🇴"},
    "الأردن": {"code": "jo", "name": "الأردن", "flag": "🇯🇴"},
    "الاردن": {"code": "jo", "name": "الأردن", "flag": "🇯🇴"},
    "egypt": {"code": "eg", "name": "مصر", "flag": "🇪🇬"},
    "مصر": {"code": "eg", "name": "مصر", "flag": "🇪🇬"},
    "saudi arabia": {"code": "sa", "name": "السعودية", "flag": "🇸🇦"},
    "السعودية": {"code": "sa", "name": "السعودية", "flag": "🇸🇦"},
    "united arab emirates": {"code": "ae", "name": "الإمارات", "flag": "🇦🇪"},
    "uae": {"code": "ae", "name": "الإمارات", "flag": "🇦🇪"},
    "الإمارات": {"code": "ae", "name": "الإمارات", "flag": "🇦🇪"},
    "iraq": {"code": "iq", "name": "العراق", "flag": "🇮🇶"},
    "العراق": {"code": "iq", "name": "العراق", "flag": "🇮🇶"},
}

# City names (English and Arabic, lower-cased) -> country code, Arabic name, slug.
CITY_MAPPINGS: Dict[str, Dict[str, str]] = {
    "damascus": {"country": "sy", "name": "دمشق", "slug": "damascus"},
    "دمشق": {"country": "sy", "name": "دمشق", "slug": "damascus"},
    "aleppo": {"country": "sy", "name": "حلب", "slug": "aleppo"},
    "حلب": {"country": "sy", "name": "حلب", "slug": "aleppo"},
    "homs": {"country": "sy", "name": "حمص", "slug": "homs"},
    "حمص": {"country": "sy", "name": "حمص", "slug": "homs"},
    "lattakia": {"country": "sy", "name": "اللاذقية", "slug": "lattakia"},
    "latakia": {"country": "sy", "name": "اللاذقية", "slug": "lattakia"},
    "اللاذقية": {"country": "sy", "name": "اللاذقية", "slug": "lattakia"},
    "tartous": {"country": "sy", "name": "طرطوس", "slug": "tartous"},
    "طرطوس": {"country": "sy", "name": "طرطوس", "slug": "tartous"},
    "daraa": {"country": "sy", "name": "درعا", "slug": "daraa"},
    "درعا": {"country": "sy", "name": "درعا", "slug": "daraa"},
    "deir ez-zor": {"country": "sy", "name": "دير الزور", "slug": "deir-ez-zor"},
    "دير الزور": {"country": "sy", "name": "دير الزور", "slug": "deir-ez-zor"},
    "hasaka": {"country": "sy", "name": "الحسكة", "slug": "hasaka"},
    "الحسكة": {"country": "sy", "name": "الحسكة", "slug": "hasaka"},
    "qamishli": {"country": "sy", "name": "القامشلي", "slug": "qamishli"},
    "القامشلي": {"country": "sy", "name": "القامشلي", "slug": "qamishli"},
    "raqqa": {"country": "sy", "name": "الرقة", "slug": "raqqa"},
    "الرقة": {"country": "sy", "name": "الرقة", "slug": "raqqa"},
    "beirut": {"country": "lb", "name": "بيروت", "slug": "beirut"},
    "بيروت": {"country": "lb", "name": "بيروت", "slug": "beirut"},
    "tripoli": {"country": "lb", "name": "طرابلس", "slug": "tripoli-lebanon"},
    "طرابلس": {"country": "lb", "name": "طرابلس", "slug": "tripoli-lebanon"},
    "sidon": {"country": "lb", "name": "صيدا", "slug": "sidon"},
    "صيدا": {"country": "lb", "name": "صيدا", "slug": "sidon"},
    "tyre": {"country": "lb", "name": "صور", "slug": "tyre"},
    "صور": {"country": "lb", "name": "صور", "slug": "tyre"},
    "zahle": {"country": "lb", "name": "زحلة", "slug": "zahle"},
    "زحلة": {"country": "lb", "name": "زحلة", "slug": "zahle"},
    "amman": {"country": "jo", "name": "عمان", "slug": "amman"},
    "عمان": {"country": "jo", "name": "عمان", "slug": "amman"},
    "zarqa": {"country": "jo", "name": "الزرقاء", "slug": "zarqa"},
    "الزرقاء": {"country": "jo", "name": "الزرقاء", "slug": "zarqa"},
    "irbid": {"country": "jo", "name": "إربد", "slug": "irbid"},
    "إربد": {"country": "jo", "name": "إربد", "slug": "irbid"},
    "aqaba": {"country": "jo", "name": "العقبة", "slug": "aqaba"},
    "العقبة": {"country": "jo", "name": "العقبة", "slug": "aqaba"},
    "cairo": {"country": "eg", "name": "القاهرة", "slug": "cairo"},
    "القاهرة": {"country": "eg", "name": "القاهرة", "slug": "cairo"},
    "alexandria": {"country": "eg", "name": "الإسكندرية", "slug": "alexandria"},
    "الإسكندرية": {"country": "eg", "name": "الإسكندرية", "slug": "alexandria"},
    "giza": {"country": "eg", "name": "الجيزة", "slug": "giza"},
    "الجيزة": {"country": "eg", "name": "الجيزة", "slug": "giza"},
    "luxor": {"country": "eg", "name": "الأقصر", "slug": "luxor"},
    "الأقصر": {"country": "eg", "name": "الأقصر", "slug": "luxor"},
    "aswan": {"country": "eg", "name": "أسوان", "slug": "aswan"},
    "أسوان": {"country": "eg", "name": "أسوان", "slug": "aswan"},
}

CAPITALS = {"sy": "damascus", "lb": "beirut", "jo": "amman", "eg": "cairo"}
COUNTRY_NAMES_BY_CODE = {"sy": "syria", "lb": "lebanon", "jo": "jordan", "eg": "egypt", "sa": "saudi arabia",
                         "ae": "united arab emirates", "iq": "iraq"}

_ADDRESS_SEPARATORS = re.compile(r"[\s,،;]+")


@dataclass
class AddressHint:
    country_name: str
    city_name: str


def derive_country_code(name: str) -> str:
    mapping = COUNTRY_MAPPINGS.get(name.strip().lower())
    if mapping:
        return mapping["code"]
    return name.strip().lower()[:2]


def _rightmost(padded: str, mappings: Dict[str, Dict[str, str]], country_code: Optional[str] = None) -> Optional[str]:
    best, best_end = None, -1
    for key, mapping in mappings.items():
        if country_code and mapping.get("country", mapping.get("code")) != country_code:
            continue
        position = padded.rfind(f" {key} ")
        if position >= 0 and position + len(key) > best_end:
            best, best_end = key, position + len(key)
    return best


def parse_address(address: str) -> Optional[AddressHint]:
    """Look for a known city, then a known country, among the address words.

    Addresses end with the city and country, so the right-most name wins.
    When a country is named, only its cities count and a bare country
    resolves to its capital. Unknown addresses give None.
    """
    tokens = [token for token in _ADDRESS_SEPARATORS.split((address or "").lower()) if token]
    if not tokens:
        return None
    padded = f" {' '.join(tokens)} "

    country_key = _rightmost(padded, COUNTRY_MAPPINGS)
    country_code = COUNTRY_MAPPINGS[country_key]["code"] if country_key else None

    city_key = _rightmost(padded, CITY_MAPPINGS, country_code)
    if city_key:
        return AddressHint(country_name=COUNTRY_NAMES_BY_CODE[CITY_MAPPINGS[city_key]["country"]], city_name=city_key)

    capital = CAPITALS.get(country_code) if country_code else None
    if capital:
        return AddressHint(country_name=COUNTRY_NAMES_BY_CODE[country_code], city_name=capital)
    return None


class LocationResolver:
    """Resolve-or-create for countries, cities and sub-areas.

    Cities are only ever matched inside their resolved country and
    sub-areas inside their resolved city.
    """

    def __init__(self, context: ResolverContext, default_country: str = "Syria", default_city: str = "Damascus") -> None:
        self.context = context
        self.store = context.store
        self.default_country = default_country
        self.default_city = default_city

    # ---------- Countries ----------

    def resolve_country(self, country_name: str, create_missing: bool = True) -> Optional[Country]:
        name = (country_name or "").strip()
        if not name:
            return None

        with self.context.lock:
            match, tier = find_match(self.context.countries(), name)
            if match:
                logger.debug("Country %r matched %r (%s)", name, match.name, tier)
                return match

            mapping = COUNTRY_MAPPINGS.get(name.lower())
            code = derive_country_code(name)
            if mapping:
                existing = self._find_country_by_code(code)
                if existing:
                    return existing

            if not create_missing:
                logger.info("No country matches %r", name)
                return None

            if not mapping:
                code = self._free_country_code(code)
            canonical_name = mapping["name"] if mapping else name
            created = self.store.create_country(
                code=code,
                name=canonical_name,
                flag=mapping["flag"] if mapping else None,
                description=f"دليل الشركات في {canonical_name}",
            )
            logger.info("Created country %r (%s)", created.name, created.code)
            return self.context.remember_country(created)

    def _find_country_by_code(self, code: str) -> Optional[Country]:
        for country in self.context.countries():
            if country.code == code:
                return country
        found = self.store.find_country_by_code(code)
        if found:
            self.context.remember_country(found)
        return found

    def _free_country_code(self, code: str) -> str:
        """A derived code held by another country gets a number appended: sw, sw2, sw3."""
        candidate, counter = code, 2
        while self._find_country_by_code(candidate) is not None:
            candidate = f"{code}{counter}"
            counter += 1
        return candidate

    # ---------- Cities ----------

    def resolve_city(self, city_name: str, country: Optional[Country], create_missing: bool = True) -> Optional[City]:
        name = (city_name or "").strip()
        if not name or country is None:
            return None

        with self.context.lock:
            in_country = [city for city in self.context.cities() if city.country_id == country.id]
            match, tier = find_match(in_country, name)
            if match:
                logger.debug("City %r matched %r in %s (%s)", name, match.name, country.code, tier)
                return match

            mapping = CITY_MAPPINGS.get(name.lower())
            if mapping and mapping["country"] != country.code:
                mapping = None
            if mapping:
                existing = self._find_city_by_slug(mapping["slug"], country)
                if existing:
                    return existing

            if not create_missing:
                logger.info("No city matches %r in %s", name, country.code)
                return None

            canonical_name = mapping["name"] if mapping else name
            slug = self._free_city_slug(mapping["slug"] if mapping else slugify_label(name, fallback="city"), country)
            created = self.store.create_city(
                slug=slug,
                name=canonical_name,
                country_id=country.id,
                country_code=country.code,
                description=f"دليل الشركات في {canonical_name}",
            )
            logger.info("Created city %r (%s) in %s", created.name, created.slug, country.code)
            return self.context.remember_city(created)

    def _find_city_by_slug(self, slug: str, country: Country) -> Optional[City]:
        for city in self.context.cities():
            if city.slug == slug:
                return city if city.country_id == country.id else None
        found = self.store.find_city_by_slug(slug)
        if found:
            self.context.remember_city(found)
            if found.country_id == country.id:
                return found
        return None

    def _free_city_slug(self, slug: str, country: Country) -> str:
        """City slugs are global; a clash with another country's city gets the country code appended."""
        taken = next((city for city in self.context.cities() if city.slug == slug), None)
        if taken is None:
            taken = self.store.find_city_by_slug(slug)
        if taken is not None and taken.country_id != country.id:
            return f"{slug}-{country.code}"
        return slug

    # ---------- Sub-areas ----------

    def resolve_sub_area(
        self, sub_area_name: str, city: Optional[City], country: Optional[Country], create_missing: bool = True
    ) -> Optional[SubArea]:
        name = (sub_area_name or "").strip()
        if not name or city is None or country is None:
            return None

        with self.context.lock:
            in_city = [area for area in self.context.sub_areas() if area.city_id == city.id]
            match, tier = find_match(in_city, name)
            if match:
                logger.debug("Sub-area %r matched %r in %s (%s)", name, match.name, city.slug, tier)
                return match

            if not create_missing:
                logger.info("No sub-area matches %r in %s", name, city.slug)
                return None

            created = self.store.create_sub_area(
                slug=slugify_label(name, fallback="area"),
                name=name,
                city_id=city.id,
                country_id=country.id,
                city_slug=city.slug,
                country_code=country.code,
                description=f"دليل الشركات في {name}",
            )
            logger.info("Created sub-area %r in %s", created.name, city.slug)
            return self.context.remember_sub_area(created)

    # ---------- Entry points ----------

    def map_country_and_city(self, country_name: str, city_name: str, create_missing: bool = True) -> Optional[Location]:
        country = self.resolve_country(country_name, create_missing)
        if country is None:
            return None
        city = self.resolve_city(city_name, country, create_missing)
        if city is None:
            return None
        return Location(country=country, city=city)

    def map_location(self, address: str = "", create_missing: bool = True) -> Optional[Location]:
        """Resolve the configured default location; the address text is not consulted."""
        return self.map_country_and_city(self.default_country, self.default_city, create_missing)

    def locate(self, company: NormalizedCompany, create_missing: bool = True) -> Optional[Location]:
        """Pick a location for a row.

        Explicit country and city columns win. Otherwise the city, country
        and address text are scanned for a known place name, and only when
        nothing is recognised does the row fall back to the default location.
        """
        if company.country and company.city:
            return self.map_country_and_city(company.country, company.city, create_missing)

        hint = parse_address(" ".join(part for part in (company.city, company.country, company.address) if part))
        if hint and company.country and derive_country_code(hint.country_name) != derive_country_code(company.country):
            hint = None
        if hint:
            location = self.map_country_and_city(hint.country_name, hint.city_name, create_missing)
            if location:
                return location

        if company.country:
            country = self.resolve_country(company.country, create_missing)
            capital = CAPITALS.get(country.code) if country else None
            if country and capital:
                city = self.resolve_city(capital, country, create_missing)
                if city:
                    return Location(country=country, city=city)

        logger.debug("Falling back to default location for %r", company.name)
        return self.map_location(company.address, create_missing)

    def all_cities(self, country_code: Optional[str] = None) -> List[City]:
        return [city for city in self.context.cities() if country_code is None or city.country_code == country_code]
