"""Unit tests for the pest species catalog."""

import json
import os
import shutil
import sys
import tempfile
import unittest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rice_pest_detection.models.detection import PestSpeciesRef
from rice_pest_detection.services.pest_catalog import StaticPestCatalog, species_from_dict


class TestStaticPestCatalog(unittest.TestCase):
    """Test cases for StaticPestCatalog."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()
        self.catalog = StaticPestCatalog()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_default_species(self):
        """The built-in catalog covers the four field pests."""
        names = {species.name for species in self.catalog.all_species()}

        self.assertEqual(names, {"Golden Apple Snail", "Rice Field Rat", "Rice Black Bug", "Grasshoppers"})

    def test_lookup_exact_and_case_insensitive(self):
        """Labels match exactly or ignoring case and surrounding spaces."""
        self.assertEqual(self.catalog.lookup("Rice Field Rat").danger_level, "high")
        self.assertEqual(self.catalog.lookup(" rice field rat ").name, "Rice Field Rat")

    def test_lookup_unknown(self):
        """Unknown and empty labels return None."""
        self.assertIsNone(self.catalog.lookup("Stem Borer"))
        self.assertIsNone(self.catalog.lookup(""))

    def test_add_replaces_existing(self):
        """Adding a species with a known name replaces the entry."""
        self.catalog.add(PestSpeciesRef(name="Grasshoppers", danger_level="low"))

        self.assertEqual(self.catalog.lookup("Grasshoppers").danger_level, "low")
        self.assertEqual(len(self.catalog), 4)

    def test_species_from_camel_case_dict(self):
        """Mobile app exports use camelCase keys."""
        species = species_from_dict({
            "name": "Stem Borer",
            "scientificName": "Scirpophaga incertulas",
            "dangerLevel": "high",
            "id": 7
        })

        self.assertEqual(species.scientific_name, "Scirpophaga incertulas")
        self.assertEqual(species.danger_level, "high")

    def test_species_without_name_rejected(self):
        """Every entry needs a name."""
        with self.assertRaises(ValueError):
            species_from_dict({"description": "nameless"})

    def test_from_json_layers_over_defaults(self):
        """Entries from a file are added to the built-in set."""
        path = os.path.join(self.test_dir, "species.json")
        with open(path, "w") as f:
            json.dump({"species": [{"name": "Stem Borer", "treatment": "Step one. Step two"}]}, f)

        catalog = StaticPestCatalog.from_json(path)

        self.assertEqual(len(catalog), 5)
        self.assertEqual(catalog.lookup("Stem Borer").treatment_steps, ["Step one", "Step two"])

    def test_from_json_without_defaults(self):
        """A file can replace the built-in set entirely."""
        path = os.path.join(self.test_dir, "species.json")
        with open(path, "w") as f:
            json.dump([{"name": "Stem Borer"}], f)

        catalog = StaticPestCatalog.from_json(path, include_defaults=False)

        self.assertEqual([s.name for s in catalog.all_species()], ["Stem Borer"])

    def test_from_json_missing_file(self):
        """A missing catalog file raises FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            StaticPestCatalog.from_json(os.path.join(self.test_dir, "missing.json"))


if __name__ == '__main__':
    unittest.main()
