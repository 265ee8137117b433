"""Static catalog of known rice pest species."""

import json
import os
from typing import Any, Dict, Iterable, List, Optional

from .interfaces import PestCatalog
from ..config.defaults import DEFAULT_PEST_SPECIES
from ..models.detection import PestSpeciesRef
from ..logging_config import get_logger

logger = get_logger("pest_catalog")

_SPECIES_FIELDS = ("name", "scientific_name", "description", "symptoms", "treatment",
                   "danger_level", "image_uri", "pesticide_image_uri")

# camelCase keys as exported by the mobile app database
_KEY_ALIASES = {
    "scientificName": "scientific_name",
    "dangerLevel": "danger_level",
    "imageUri": "image_uri",
    "pesticideImageUri": "pesticide_image_uri",
}


def species_from_dict(data: Dict[str, Any]) -> PestSpeciesRef:
    """Build a species entry from a dict, ignoring unknown keys."""
    normalized = {_KEY_ALIASES.get(key, key): value for key, value in data.items()}
    if not normalized.get("name"):
        raise ValueError("Species entry needs a name")
    return PestSpeciesRef(**{key: normalized[key] for key in _SPECIES_FIELDS if key in normalized})


class StaticPestCatalog(PestCatalog):
    """In-memory species lookup keyed by classifier label."""

    def __init__(self, species: Optional[Iterable[PestSpeciesRef]] = None):
        if species is None:
            species = [species_from_dict(entry) for entry in DEFAULT_PEST_SPECIES]
        self._species: Dict[str, PestSpeciesRef] = {}
        for entry in species:
            self.add(entry)

    @classmethod
    def from_json(cls, path: str, include_defaults: bool = True) -> "StaticPestCatalog":
        """Load species from a JSON list, optionally layered over the built-in set."""
        if not os.path.exists(path):
            raise FileNotFoundError(f"Species catalog not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        entries = data.get("species", []) if isinstance(data, dict) else data
        catalog = cls() if include_defaults else cls(species=[])
        for entry in entries:
            catalog.add(species_from_dict(entry))

        logger.info(f"Loaded {len(entries)} species from {path}")
        return catalog

    def add(self, species: PestSpeciesRef) -> None:
        """Add or replace a species entry."""
        self._species[species.name] = species

    def lookup(self, label: str) -> Optional[PestSpeciesRef]:
        if not label:
            return None
        if label in self._species:
            return self._species[label]

        wanted = label.strip().lower()
        for name, species in self._species.items():
            if name.lower() == wanted:
                return species
        return None

    def all_species(self) -> List[PestSpeciesRef]:
        return list(self._species.values())

    def __len__(self) -> int:
        return len(self._species)
