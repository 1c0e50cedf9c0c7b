"""Unit tests for the polyline codec."""

import unittest

from tripflow.core import polyline
from tripflow.core.models import LatLng

# Reference example from the published format description.
_REFERENCE = '_p~iF~ps|U_ulLnnqC_mqNvxq`@'
_REFERENCE_POINTS = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


class TestDecode(unittest.TestCase):
    """Tests for polyline.decode."""

    def test_reference_string(self) -> None:
        """The reference string decodes to the documented coordinates."""
        points = polyline.decode(_REFERENCE)
        self.assertEqual(len(points), 3)
        for point, (lat, lng) in zip(points, _REFERENCE_POINTS):
            self.assertAlmostEqual(point.lat, lat, places=5)
            self.assertAlmostEqual(point.lng, lng, places=5)

    def test_empty_string(self) -> None:
        """An empty string decodes to no points."""
        self.assertEqual(polyline.decode(''), [])

    def test_truncated_string_rejected(self) -> None:
        """A string that ends mid-value is rejected."""
        with self.assertRaises(ValueError):
            polyline.decode(_REFERENCE[:-1])

    def test_invalid_character_rejected(self) -> None:
        """Characters below the alphabet offset are rejected."""
        with self.assertRaises(ValueError):
            polyline.decode('_p~iF ps|U')


class TestEncode(unittest.TestCase):
    """Tests for polyline.encode."""

    def test_reference_points(self) -> None:
        """Encoding the reference points reproduces the reference string."""
        points = [LatLng(lat=lat, lng=lng) for lat, lng in _REFERENCE_POINTS]
        self.assertEqual(polyline.encode(points), _REFERENCE)

    def test_decode_reproduces_input_within_precision(self) -> None:
        """Decoding an encoded route reproduces each point within 1e-5 degrees."""
        points = [
            LatLng(lat=48.858370, lng=2.294481),
            LatLng(lat=48.860611, lng=2.337644),
            LatLng(lat=-33.856784, lng=151.215297),
            LatLng(lat=0.0, lng=0.0),
            LatLng(lat=89.99999, lng=-179.99999),
        ]
        decoded = polyline.decode(polyline.encode(points))
        self.assertEqual(len(decoded), len(points))
        for original, result in zip(points, decoded):
            self.assertLessEqual(abs(original.lat - result.lat), 1e-5)
            self.assertLessEqual(abs(original.lng - result.lng), 1e-5)


class TestSamePoint(unittest.TestCase):
    """Tests for polyline.same_point."""

    def test_equal_at_precision(self) -> None:
        """Points differing below 1e-5 degrees are the same vertex."""
        a = LatLng(lat=48.858371, lng=2.294481)
        b = LatLng(lat=48.858372, lng=2.294479)
        self.assertTrue(polyline.same_point(a, b))

    def test_different(self) -> None:
        """Points a vertex apart are different."""
        a = LatLng(lat=48.85837, lng=2.29448)
        self.assertFalse(polyline.same_point(a, LatLng(lat=48.85838, lng=2.29448)))


if __name__ == '__main__':
    unittest.main()
