import tempfile
import unittest
from pathlib import Path

import pandas as pd

from listing_prices.etl import deduplicate, run_etl, run_pipeline, run_pipeline_chunked, standardize_columns
from listing_prices.filters import FilterConfig
from listing_prices.regions import RegionLookup
from listing_prices.validation.data_contracts import DataContractError


def _raw_listing(**overrides):
    row = {
        "id": "1",
        "createdAt": "2024-04-10T09:00:00.000Z",
        "data_offerType": "sale",
        "data_type": "apartment",
        "data_priceTotal": "3000000",
        "data_livingArea": "60",
        "data_district": "R-district",
        "data_gpsCoord_lat": "50.0",
        "data_gpsCoord_lon": "15.0",
    }
    row.update(overrides)
    return row


def _reference():
    return pd.DataFrame(
        {
            "okres_text": ["R-district", "Praha", "Ostrava - město"],
            "kraj_text": ["R", "Hlavní město Praha", "Moravskoslezský kraj"],
        }
    )


def _small_input():
    return pd.DataFrame(
        [
            _raw_listing(id="dup", data_priceTotal="2500000", data_livingArea="50"),
            _raw_listing(id="dup", data_priceTotal="9999999", data_livingArea="20"),
            _raw_listing(id="abroad", data_gpsCoord_lat="47.1", data_gpsCoord_lon="9.5", data_district=""),
            _raw_listing(id="valid"),
        ]
    )


class TestDeduplicate(unittest.TestCase):
    def test_one_row_per_id_first_occurrence_kept(self):
        df = pd.DataFrame(
            {
                "listing_id": ["a", "b", "a", "c", "b"],
                "price_total": ["1", "2", "3", "4", "5"],
            }
        )

        once = deduplicate(df)
        twice = deduplicate(once)

        self.assertEqual(once["listing_id"].tolist(), ["a", "b", "c"])
        self.assertEqual(once["price_total"].tolist(), ["1", "2", "4"])
        self.assertTrue(once.equals(twice))

    def test_seen_ids_span_chunks(self):
        seen = set()
        first = deduplicate(pd.DataFrame({"listing_id": ["a", "b"]}), seen)
        second = deduplicate(pd.DataFrame({"listing_id": ["b", "c", "c"]}), seen)

        self.assertEqual(first["listing_id"].tolist(), ["a", "b"])
        self.assertEqual(second["listing_id"].tolist(), ["c"])
        self.assertEqual(seen, {"a", "b", "c"})


class TestRunPipeline(unittest.TestCase):
    def setUp(self):
        self.lookup = RegionLookup.from_frame(_reference())

    def test_small_table_produces_one_group(self):
        result = run_pipeline(_small_input(), self.lookup)
        out = result.aggregates

        self.assertEqual(len(out), 1)
        valid = out.iloc[0]
        self.assertEqual(valid["year"], 2024)
        self.assertEqual(valid["region"], "R")
        self.assertEqual(valid["offer_type"], "sale")
        self.assertEqual(valid["property_type"], "apartment")
        self.assertEqual(valid["row_count"], 2)

    def test_worked_example_single_group(self):
        listings = pd.DataFrame(
            [
                _raw_listing(id="dup", data_type="house", data_priceTotal="", data_livingArea="70"),
                _raw_listing(id="dup", data_type="house", data_priceTotal="4000000", data_livingArea="80"),
                _raw_listing(id="abroad", data_gpsCoord_lat="47.1", data_gpsCoord_lon="9.5", data_district=None),
                _raw_listing(id="valid"),
            ]
        )

        result = run_pipeline(listings, self.lookup)
        out = result.aggregates

        self.assertEqual(len(out), 1)
        row = out.iloc[0]
        self.assertEqual((row["year"], row["region"], row["offer_type"], row["property_type"]),
                         (2024, "R", "sale", "apartment"))
        self.assertEqual(row["row_count"], 1)
        self.assertEqual(row["mean_price_per_area"], 50_000.0)
        self.assertEqual(row["median_price_per_area"], 50_000.0)

    def test_stage_stats_track_rows_in_and_out(self):
        result = run_pipeline(_small_input(), self.lookup)
        stats = result.stage_stats.set_index("stage")

        self.assertEqual(stats.loc["extract", "rows_in"], 4)
        self.assertEqual(stats.loc["deduplicate", "rows_out"], 3)
        self.assertEqual(stats.loc["join_regions", "rows_out"], 3)
        self.assertEqual(stats.loc["filter", "rows_out"], 2)
        self.assertEqual(stats.loc["aggregate", "rows_out"], 1)
        self.assertEqual(result.rejections["coordinates_in_bounds"], 1)

    def test_unmatched_region_is_kept_as_null_group(self):
        listings = pd.DataFrame([_raw_listing(id="x", data_district="Nowhere")])
        result = run_pipeline(listings, self.lookup)
        self.assertEqual(result.unmatched_regions, 1)
        self.assertEqual(len(result.aggregates), 1)
        self.assertIsNone(result.aggregates.loc[0, "region"])

    def test_district_exceptions_reach_the_join(self):
        listings = pd.DataFrame(
            [
                _raw_listing(id="p", data_district="HLAVNÍ MĚSTO PRAHA"),
                _raw_listing(id="o", data_district="Ostrava"),
            ]
        )
        out = run_pipeline(listings, self.lookup).aggregates
        self.assertEqual(sorted(out["region"]), ["HLAVNÍ MĚSTO PRAHA", "MORAVSKOSLEZSKÝ KRAJ"])

    def test_tunable_price_ranges(self):
        config = FilterConfig().with_price_range("sale", (60_000, 300_000))
        result = run_pipeline(_small_input(), self.lookup, config)
        self.assertTrue(result.aggregates.empty)

    def test_missing_columns_fail_fast(self):
        with self.assertRaises(DataContractError):
            run_pipeline(pd.DataFrame({"id": ["1"]}), self.lookup)

    def test_chunked_matches_in_memory(self):
        listings = pd.concat([_small_input()] * 3, ignore_index=True)
        listings.loc[8:, "id"] = ["late-1", "late-2", "late-3", "late-4"]

        in_memory = run_pipeline(listings, self.lookup).aggregates
        chunks = [listings.iloc[i:i + 5] for i in range(0, len(listings), 5)]
        chunked = run_pipeline_chunked(chunks, self.lookup)

        pd.testing.assert_frame_equal(in_memory, chunked.aggregates)
        self.assertEqual(
            chunked.stage_stats.set_index("stage").loc["deduplicate", "rows_out"],
            listings["id"].nunique(),
        )


class TestRunEtl(unittest.TestCase):
    def test_run_etl_writes_outputs_and_report(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            listings_path = tmp / "listings.csv"
            regions_path = tmp / "uzemi.csv"
            output_path = tmp / "out" / "aggregates.csv"
            report_dir = tmp / "reports"

            _small_input().to_csv(listings_path, index=False)
            _reference().to_csv(regions_path, index=False)

            result = run_etl(
                input_path=listings_path,
                regions_path=regions_path,
                output_path=output_path,
                write_report=True,
                report_dir=report_dir,
            )

            written = pd.read_csv(output_path)
            self.assertEqual(len(written), 1)
            self.assertEqual(written.loc[0, "region"], "R")
            self.assertEqual(int(written.loc[0, "row_count"]), 2)
            self.assertEqual([label for label, _ in result.contract_results], ["raw-listings", "aggregates"])

            reports = list(report_dir.glob("etl_run_*.md"))
            self.assertEqual(len(reports), 1)
            text = reports[0].read_text(encoding="utf-8")
            self.assertIn("## Stage Summary", text)
            self.assertIn("coordinates_in_bounds", text)
            self.assertIn("## Missing Values", text)
            self.assertEqual(len(list(report_dir.glob("etl_run_*.csv"))), 1)

    def test_run_etl_chunked(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            listings_path = tmp / "listings.csv"
            regions_path = tmp / "uzemi.csv"
            _small_input().to_csv(listings_path, index=False)
            _reference().to_csv(regions_path, index=False)

            result = run_etl(
                input_path=listings_path,
                regions_path=regions_path,
                output_path=None,
                chunksize=2,
            )

            self.assertEqual(len(result.aggregates), 1)
            self.assertEqual(result.aggregates.loc[0, "row_count"], 2)

    def test_chunked_report_profile_matches_in_memory(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            listings_path = tmp / "listings.csv"
            regions_path = tmp / "uzemi.csv"
            _small_input().to_csv(listings_path, index=False)
            _reference().to_csv(regions_path, index=False)

            in_memory = run_etl(
                input_path=listings_path,
                regions_path=regions_path,
                output_path=None,
                write_report=True,
                report_dir=tmp / "full",
            )
            chunked = run_etl(
                input_path=listings_path,
                regions_path=regions_path,
                output_path=None,
                chunksize=3,
                write_report=True,
                report_dir=tmp / "chunked",
            )

            pd.testing.assert_frame_equal(chunked.missing_profile, in_memory.missing_profile)
            self.assertEqual(chunked.quality_counts, in_memory.quality_counts)
            self.assertEqual(chunked.missing_profile.loc[0, "column_name"], "district")
            self.assertEqual(chunked.missing_profile.loc[0, "nulls"], 1)
            self.assertEqual(chunked.quality_counts["GPS Coordinates"]["out_of_range"], 1)

            text = next((tmp / "chunked").glob("etl_run_*.md")).read_text(encoding="utf-8")
            self.assertNotIn("No profile captured.", text)


    def test_missing_input_raises(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            _reference().to_csv(tmp / "uzemi.csv", index=False)
            with self.assertRaises(FileNotFoundError):
                run_etl(input_path=tmp / "missing.csv", regions_path=tmp / "uzemi.csv", output_path=None)


class TestStandardizeColumns(unittest.TestCase):
    def test_apify_names_renamed(self):
        out = standardize_columns(pd.DataFrame([_raw_listing()]))
        self.assertIn("listing_id", out.columns)
        self.assertIn("district", out.columns)
        self.assertNotIn("data_district", out.columns)


if __name__ == "__main__":
    unittest.main()
