"""Map free-text category names from CSV exports onto canonical categories."""

import logging
from typing import Dict, List, Optional

from directory_import.etl.slugs import slugify_label
from directory_import.models import Category, SubCategory
from directory_import.resolvers.context import ResolverContext
from directory_import.resolvers.matching import find_match

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_ICON = "Building"
DEFAULT_SUB_CATEGORY_ICON = "Tag"

# Common English labels from Google Maps exports -> canonical category.
CATEGORY_MAPPINGS: Dict[str, Dict[str, str]] = {
    "software company": {"slug": "technology", "name": "التكنولوجيا", "icon": "Laptop"},
    "website designer": {"slug": "technology", "name": "التكنولوجيا", "icon": "Laptop"},
    "corporate office": {"slug": "business-services", "name": "الخدمات التجارية", "icon": "Building"},
    "it company": {"slug": "technology", "name": "التكنولوجيا", "icon": "Laptop"},
    "restaurant": {"slug": "food", "name": "الأغذية والمطاعم", "icon": "Utensils"},
    "cafe": {"slug": "food", "name": "الأغذية والمطاعم", "icon": "Utensils"},
    "hospital": {"slug": "healthcare", "name": "الرعاية الصحية", "icon": "Heart"},
    "clinic": {"slug": "healthcare", "name": "الرعاية الصحية", "icon": "Heart"},
    "pharmacy": {"slug": "healthcare", "name": "الرعاية الصحية", "icon": "Heart"},
}


class CategoryResolver:
    """Resolve-or-create for categories and their sub-categories."""

    def __init__(self, context: ResolverContext) -> None:
        self.context = context
        self.store = context.store

    def resolve(self, category_name: str, create_missing: bool = True) -> Optional[Category]:
        name = (category_name or "").strip()
        if not name:
            return None

        with self.context.lock:
            match, tier = find_match(self.context.categories(), name)
            if match:
                logger.debug("Category %r matched %r (%s)", name, match.name, tier)
                return match

            mapping = CATEGORY_MAPPINGS.get(name.lower())
            if mapping:
                mapped = self._find_by_slug(mapping["slug"])
                if mapped:
                    logger.debug("Category %r matched %r via static mapping", name, mapped.name)
                    return mapped
                if create_missing:
                    created = self.store.create_category(
                        slug=mapping["slug"],
                        name=mapping["name"],
                        icon=mapping["icon"],
                        description=f"فئة {mapping['name']}",
                    )
                    logger.info("Created mapped category %r for %r", created.name, name)
                    return self.context.remember_category(created)

            if create_missing:
                created = self.store.create_category(
                    slug=slugify_label(name, fallback="category"),
                    name=name,
                    icon=DEFAULT_CATEGORY_ICON,
                    description=f"فئة {name}",
                )
                logger.info("Created category %r", created.name)
                return self.context.remember_category(created)

        logger.info("No category matches %r", name)
        return None

    def _find_by_slug(self, slug: str) -> Optional[Category]:
        for category in self.context.categories():
            if category.slug == slug:
                return category
        found = self.store.find_category_by_slug(slug)
        if found:
            self.context.remember_category(found)
        return found

    def resolve_sub_category(
        self, sub_category_name: str, category_id: str, create_missing: bool = True
    ) -> Optional[SubCategory]:
        """Same tiers as ``resolve`` but only among the category's own children."""
        name = (sub_category_name or "").strip()
        if not name or not category_id:
            return None

        with self.context.lock:
            siblings = [sub for sub in self.context.sub_categories() if sub.category_id == category_id]
            match, tier = find_match(siblings, name)
            if match:
                logger.debug("Sub-category %r matched %r (%s)", name, match.name, tier)
                return match

            if create_missing:
                created = self.store.create_sub_category(
                    slug=slugify_label(name, fallback="category"),
                    name=name,
                    category_id=category_id,
                    icon=DEFAULT_SUB_CATEGORY_ICON,
                    description=f"فئة فرعية {name}",
                )
                logger.info("Created sub-category %r under %s", created.name, category_id)
                return self.context.remember_sub_category(created)

        logger.info("No sub-category matches %r in %s", name, category_id)
        return None

    def all_categories(self) -> List[Category]:
        return list(self.context.categories())

    def search(self, term: str) -> List[Category]:
        needle = (term or "").strip().lower()
        return [
            category
            for category in self.context.categories()
            if needle in category.name.lower() or needle in category.slug.lower()
        ]
