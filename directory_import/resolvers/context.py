"""Per-run snapshot of canonical reference data."""

import logging
import threading
from typing import Any, Callable, Dict, List

from directory_import.models import Category, City, Country, SubArea, SubCategory

logger = logging.getLogger(__name__)


class ResolverContext:
    """Holds the canonical entities seen during one import run.

    Each collection is loaded from the store the first time it is needed and
    then kept in memory; entities created during the run are appended so
    later rows see them without another query. Resolvers take ``lock``
    around every resolve-or-create so concurrent rows cannot both create
    the same missing entity.
    """

    def __init__(self, store: Any) -> None:
        self.store = store
        self.lock = threading.RLock()
        self._cache: Dict[str, List[Any]] = {}
        self._loaders: Dict[str, Callable[[], List[Any]]] = {
            "categories": store.list_categories,
            "sub_categories": store.list_sub_categories,
            "countries": store.list_countries,
            "cities": store.list_cities,
            "sub_areas": store.list_sub_areas,
        }

    def _snapshot(self, kind: str) -> List[Any]:
        with self.lock:
            if kind not in self._cache:
                self._cache[kind] = list(self._loaders[kind]())
                logger.info("Loaded %d %s from the store", len(self._cache[kind]), kind.replace("_", " "))
            return self._cache[kind]

    def _remember(self, kind: str, entity: Any) -> Any:
        with self.lock:
            items = self._snapshot(kind)
            if all(item.id != entity.id for item in items):
                items.append(entity)
            return entity

    def categories(self) -> List[Category]:
        return self._snapshot("categories")

    def sub_categories(self) -> List[SubCategory]:
        return self._snapshot("sub_categories")

    def countries(self) -> List[Country]:
        return self._snapshot("countries")

    def cities(self) -> List[City]:
        return self._snapshot("cities")

    def sub_areas(self) -> List[SubArea]:
        return self._snapshot("sub_areas")

    def remember_category(self, category: Category) -> Category:
        return self._remember("categories", category)

    def remember_sub_category(self, sub_category: SubCategory) -> SubCategory:
        return self._remember("sub_categories", sub_category)

    def remember_country(self, country: Country) -> Country:
        return self._remember("countries", country)

    def remember_city(self, city: City) -> City:
        return self._remember("cities", city)

    def remember_sub_area(self, sub_area: SubArea) -> SubArea:
        return self._remember("sub_areas", sub_area)

    def refresh(self) -> None:
        """Drop every snapshot so the next lookup re-reads the store."""
        with self.lock:
            self._cache.clear()
