import unittest

import numpy as np
import pandas as pd

from listing_prices.regions import RegionLookup, RegionLookupError, join_regions


def _reference():
    return pd.DataFrame(
        {
            "okres_text": ["Praha", "Ostrava - město", "Brno-venkov", "Brno-venkov", "Karviná"],
            "kraj_text": [
                "Hlavní město Praha",
                "Moravskoslezský kraj",
                "Jihomoravský kraj",
                "Jihomoravský kraj",
                "Moravskoslezský kraj",
            ],
        }
    )


class TestRegionLookup(unittest.TestCase):
    def test_reference_keys_are_normalized(self):
        lookup = RegionLookup.from_frame(_reference())
        self.assertEqual(len(lookup), 4)
        self.assertEqual(lookup.region_for("ostrava-město"), "Moravskoslezský kraj")
        self.assertEqual(lookup.districts["ostrava-město"], "Ostrava - město")
        self.assertIsNone(lookup.region_for("plzeň-město"))
        self.assertIsNone(lookup.region_for(None))

    def test_lookup_is_read_only(self):
        lookup = RegionLookup.from_frame(_reference())
        with self.assertRaises(TypeError):
            lookup.regions["praha"] = "X"

    def test_conflicting_regions_rejected(self):
        reference = pd.DataFrame(
            {"okres_text": ["Praha", "PRAHA "], "kraj_text": ["Hlavní město Praha", "Středočeský kraj"]}
        )
        with self.assertRaises(RegionLookupError):
            RegionLookup.from_frame(reference)

    def test_blank_region_left_unmatched(self):
        reference = pd.DataFrame({"okres_text": ["Praha", "Kladno"], "kraj_text": ["Hlavní město Praha", "   "]})
        lookup = RegionLookup.from_frame(reference)
        self.assertEqual(len(lookup), 1)
        self.assertIsNone(lookup.region_for("kladno"))

        listings = pd.DataFrame({"district_key": ["kladno"], "price_total": [1_000_000.0], "living_area": [50.0]})
        self.assertTrue(pd.isna(join_regions(listings, lookup).loc[0, "region"]))

    def test_missing_columns_rejected(self):
        with self.assertRaises(RegionLookupError):
            RegionLookup.from_frame(pd.DataFrame({"district": ["Praha"]}))


class TestJoinRegions(unittest.TestCase):
    def test_left_join_keeps_unmatched_rows(self):
        lookup = RegionLookup.from_frame(_reference())
        listings = pd.DataFrame(
            {
                "district_key": ["praha", "ostrava-město", "nowhere", None],
                "price_total": [3_000_000.0, 2_000_000.0, 1_000_000.0, np.nan],
                "living_area": [60.0, 0.0, 50.0, 40.0],
            }
        )

        out = join_regions(listings, lookup)

        self.assertEqual(len(out), 4)
        self.assertEqual(out.loc[0, "region"], "Hlavní město Praha")
        self.assertEqual(out.loc[1, "region"], "Moravskoslezský kraj")
        self.assertTrue(pd.isna(out.loc[2, "region"]))
        self.assertTrue(pd.isna(out.loc[3, "region"]))

        self.assertEqual(out.loc[0, "price_per_area"], 50_000.0)
        self.assertTrue(pd.isna(out.loc[1, "price_per_area"]))  # zero area
        self.assertEqual(out.loc[2, "price_per_area"], 20_000.0)
        self.assertTrue(pd.isna(out.loc[3, "price_per_area"]))  # missing price

        self.assertNotIn("region", listings.columns)


if __name__ == "__main__":
    unittest.main()
