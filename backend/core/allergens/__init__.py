from .catalog import AllergenOption, AllergenCatalog, ALLERGEN_OPTIONS, DEFAULT_CATALOG

__all__ = [
    "AllergenOption",
    "AllergenCatalog",
    "ALLERGEN_OPTIONS",
    "DEFAULT_CATALOG",
]
