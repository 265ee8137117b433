"""Unit tests for utility functions and detection models."""

import unittest
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rice_pest_detection.models.detection import DetectionEvent, Frame, PestSpeciesRef, Region
from rice_pest_detection.utils import (
    center_to_top_left, clamp_box, round_percent, split_treatment_steps,
    top_left_to_center, top_two
)
from fakes import make_image


class TestBoxConversion(unittest.TestCase):
    """Test cases for box format helpers."""

    def test_center_to_top_left(self):
        """Center (50, 40) with size 20x10 starts at (40, 35)."""
        self.assertEqual(center_to_top_left(50, 40, 20, 10), (40, 35, 20, 10))

    def test_top_left_to_center_inverts(self):
        """Converting back restores the center."""
        box = center_to_top_left(123.5, 77.25, 31, 19)
        self.assertEqual(top_left_to_center(*box), (123.5, 77.25, 31, 19))

    def test_clamp_box_to_image(self):
        """Boxes hanging over the edge are clipped."""
        self.assertEqual(clamp_box(-5, 10.4, 30, 100, 20, 50), (0, 10, 20, 50))


class TestScoring(unittest.TestCase):
    """Test cases for percentage rounding and top-two extraction."""

    def test_round_percent_rounds_half_up(self):
        """Halves round up."""
        self.assertEqual(round_percent(0.375), 38)
        self.assertEqual(round_percent(0.125), 13)
        self.assertEqual(round_percent(0.124), 12)

    def test_round_percent_bounds(self):
        """0 and 1 map to 0 and 100."""
        self.assertEqual(round_percent(0.0), 0)
        self.assertEqual(round_percent(1.0), 100)

    def test_top_two(self):
        """Index of the best score plus the two highest values."""
        self.assertEqual(top_two([0.1, 0.7, 0.2]), (1, 0.7, 0.2))

    def test_top_two_with_tie(self):
        """Tied leaders leave a zero margin."""
        index, highest, second = top_two([0.5, 0.5])
        self.assertEqual(highest, second)

    def test_top_two_empty(self):
        """An empty vector is an error."""
        with self.assertRaises(ValueError):
            top_two([])


class TestTreatmentSteps(unittest.TestCase):
    """Test cases for treatment step splitting."""

    def test_split_on_sentence_boundaries(self):
        """Steps are separated by a period and a space."""
        steps = split_treatment_steps("Spray early. Drain the field.  Check again")
        self.assertEqual(steps, ["Spray early", "Drain the field", "Check again"])

    def test_empty_treatment(self):
        """No text means no steps."""
        self.assertEqual(split_treatment_steps(""), [])

    def test_species_treatment_steps(self):
        """Species entries expose their steps."""
        species = PestSpeciesRef(name="Grasshoppers", treatment="PESTICIDE: a. MANUAL: b")
        self.assertEqual(species.treatment_steps, ["PESTICIDE: a", "MANUAL: b"])


class TestDetectionModels(unittest.TestCase):
    """Test cases for the detection data models."""

    def test_detected_event_requires_pest_type(self):
        """An accepted event must name the pest."""
        with self.assertRaises(ValueError):
            DetectionEvent(detected=True, confidence=95)

    def test_confidence_must_be_a_percentage(self):
        """Confidence is an integer between 0 and 100."""
        with self.assertRaises(ValueError):
            DetectionEvent(detected=False, confidence=101)

    def test_event_sequences_are_immutable(self):
        """Lists handed to the event are stored as tuples."""
        region = Region(1, 2, 3, 4)
        event = DetectionEvent(detected=True, pest_type="Grasshoppers", confidence=95,
                               regions=[region], recommendations=["a", "b"])

        self.assertEqual(event.regions, (region,))
        self.assertEqual(event.recommendations, ("a", "b"))

    def test_event_to_dict(self):
        """The serialized form carries regions and recommendations."""
        event = DetectionEvent(detected=True, pest_type="Grasshoppers", confidence=95,
                               regions=[Region(1, 2, 3, 4, "bird", 0.9)], recommendations=["a"])

        data = event.to_dict()

        self.assertEqual(data["pest_type"], "Grasshoppers")
        self.assertEqual(data["regions"][0]["source_label"], "bird")
        self.assertEqual(data["recommendations"], ["a"])

    def test_frame_release(self):
        """Released frames drop their pixels."""
        frame = Frame(data=make_image())
        self.assertTrue(frame.is_decoded)

        frame.release()

        self.assertTrue(frame.released)
        self.assertIsNone(frame.data)

    def test_region_geometry(self):
        """Area and center of a top-left box."""
        region = Region(10, 20, 30, 40)
        self.assertEqual(region.area(), 1200)
        self.assertEqual(region.center(), (25, 40))


if __name__ == '__main__':
    unittest.main()
