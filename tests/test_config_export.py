import csv
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from openpyxl import load_workbook

from oddsgrid.config import build_proxy_pool, default_config, discover_config, load_config, parse_config
from oddsgrid.dates import date_range, parse_date
from oddsgrid.errors import ConfigError
from oddsgrid.export import export_csv, export_excel, export_rows, rows_to_frame


class ConfigTests(unittest.TestCase):
    def test_defaults_are_unrestricted_and_independent(self) -> None:
        a = default_config("football")
        b = default_config("football")
        self.assertEqual(a.output_params["homeFullTimeOdd"], {"from": -1, "to": 999})
        self.assertEqual(a.output_params["homePregameFormLast5"], [])
        a.output_params["homeFullTimeOdd"]["to"] = 2
        self.assertEqual(b.output_params["homeFullTimeOdd"]["to"], 999)
        self.assertIn("homeWins", default_config("basketball").output_params)
        with self.assertRaises(ConfigError):
            default_config("tennis")

    def test_parse_detects_sport_and_reads_proxies(self) -> None:
        cfg = parse_config(
            {
                "fromDate": "2024-06-01",
                "toDate": "2024-06-03",
                "outputParams": {"homeFullTimeOdd": {"from": 1.5, "to": 3}},
                "configParams": {"proxy": "http://a:1", "proxies": ["http://b:2"]},
            }
        )
        self.assertEqual(cfg.sport, "football")
        self.assertEqual(cfg.proxies, ("http://a:1", "http://b:2"))
        self.assertEqual(cfg.from_date, "2024-06-01")
        self.assertEqual(parse_config({"outputParams": {"homeOdd": []}}).sport, "basketball")

    def test_validation_errors(self) -> None:
        bad = [
            [],
            {"outputParams": {"homeOdd": {"from": 1}}},
            {"outputParams": {"homeOdd": {"from": "1", "to": 2}}},
            {"outputParams": {"homeOdd": 3}},
            {"fromDate": "01/06/2024"},
            {"fromDate": "2024-06-05", "toDate": "2024-06-01"},
            {"configParams": {"proxies": "http://a:1"}},
        ]
        for raw in bad:
            with self.subTest(raw=raw), self.assertRaises(ConfigError):
                parse_config(raw)

    def test_discovery_picks_first_matching_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            d = Path(tmp)
            (d / "a_broken.json").write_text("{not json", encoding="utf-8")
            (d / "b_basket.json").write_text(json.dumps({"outputParams": {"homeOdd": {"from": 1, "to": 2}}}), encoding="utf-8")
            (d / "c_foot.json").write_text(json.dumps({"outputParams": {"homeFullTimeOdd": {"from": 1, "to": 2}}}), encoding="utf-8")
            (d / "d_foot.json").write_text(json.dumps({"outputParams": {"homeFullTimeOdd": {"from": 5, "to": 6}}}), encoding="utf-8")
            (d / "package.json").write_text(json.dumps({"name": "x"}), encoding="utf-8")

            foot = discover_config("football", tmp)
            basket = discover_config("basketball", tmp)
        self.assertTrue(foot.source.endswith("c_foot.json"))
        self.assertEqual(foot.output_params["homeFullTimeOdd"], {"from": 1, "to": 2})
        self.assertTrue(basket.source.endswith("b_basket.json"))

    def test_discovery_falls_back_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cfg = discover_config("basketball", tmp)
        self.assertIsNone(cfg.source)
        self.assertEqual(cfg.output_params["homeOdd"], {"from": -1, "to": 999})

    def test_load_config_errors(self) -> None:
        with self.assertRaises(ConfigError):
            load_config("/nonexistent/params.json")

    def test_proxy_pool_merges_env(self) -> None:
        cfg = parse_config({"configParams": {"proxies": ["http://a:1"]}})
        with patch.dict("os.environ", {"ODDSGRID_PROXIES": "http://b:2,http://a:1"}, clear=False):
            pool = build_proxy_pool(cfg)
        self.assertEqual([ep.host for ep in pool.endpoints], ["a", "b"])


class DateRangeTests(unittest.TestCase):
    def test_inclusive_range_across_month(self) -> None:
        self.assertEqual(date_range("2024-05-30", "2024-06-02"), ["2024-05-30", "2024-05-31", "2024-06-01", "2024-06-02"])
        self.assertEqual(date_range("2024-06-01", "2024-06-01"), ["2024-06-01"])

    def test_invalid_dates(self) -> None:
        with self.assertRaises(ConfigError):
            date_range("2024-06-02", "2024-06-01")
        with self.assertRaises(ConfigError):
            parse_date("2024-02-30")


class ExportTests(unittest.TestCase):
    ROWS = [
        {"date": "2024-06-01", "homeTeam": "Arsenal", "homeOdd": 3.5, "note": 'say "hi", ok'},
        {"date": "2024-06-01", "homeTeam": "Chelsea", "homeOdd": None, "extra": 7},
    ]

    def test_frame_columns_and_blanks(self) -> None:
        df = rows_to_frame(self.ROWS)
        self.assertEqual(list(df.columns), ["date", "homeTeam", "homeOdd", "note", "extra"])
        self.assertEqual(df.iloc[1]["homeOdd"], "")
        self.assertEqual(df.iloc[0]["extra"], "")

    def test_csv_round_trip_keeps_quoting(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = export_csv(self.ROWS, os.path.join(tmp, "out.csv"))
            with open(path, newline="", encoding="utf-8") as f:
                got = list(csv.DictReader(f))
        self.assertEqual(got[0]["note"], 'say "hi", ok')
        self.assertEqual(got[1]["homeOdd"], "")
        self.assertEqual(got[0]["homeOdd"], "3.5")

    def test_excel_sheet(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = export_excel(self.ROWS, os.path.join(tmp, "out.xlsx"), sheet_name="Basketball")
            wb = load_workbook(path)
            ws = wb["Basketball"]
            header = [c.value for c in ws[1]]
            second = [c.value for c in ws[3]]
            wb.close()
        self.assertEqual(header, ["date", "homeTeam", "homeOdd", "note", "extra"])
        self.assertEqual(second[1], "Chelsea")
        self.assertIn(second[2], (None, ""))
        self.assertEqual(second[4], 7)

    def test_empty_input_writes_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(export_rows([], out_dir=tmp, basename="football_x"), [])
            self.assertEqual(os.listdir(tmp), [])

    def test_export_rows_writes_both(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            written = export_rows(self.ROWS, out_dir=tmp, basename="basketball_2024-06-01_2024-06-01")
            self.assertEqual(sorted(os.path.basename(p) for p in written), [
                "basketball_2024-06-01_2024-06-01.csv",
                "basketball_2024-06-01_2024-06-01.xlsx",
            ])


if __name__ == "__main__":
    unittest.main()
