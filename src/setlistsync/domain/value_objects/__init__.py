"""Domain value objects."""

from setlistsync.domain.value_objects.name_normalization import (
    ABBREVIATIONS,
    canonical_form,
    name_key,
    normalize_name,
    normalize_title,
)

__all__ = ["ABBREVIATIONS", "canonical_form", "name_key", "normalize_name", "normalize_title"]
