import json
import unittest

from oddsgrid.ticket_extract import (
    ExtractionNotFound,
    TicketRow,
    extract_ticket_rows,
    locate_ticket_items,
    parse_ticket_payload,
    scan_order,
    scan_window,
)


def _payload(*prices):
    items = [{"rawPrice": p, "section": "A", "row": "3", "quantity": "2"} for p in prices]
    return json.dumps({"grid": {"items": items, "totalCount": len(items)}})


def _reader(rows):
    seen = []

    async def read(i):
        seen.append(i)
        value = rows.get(i)
        if isinstance(value, Exception):
            raise value
        return value

    return read, seen


class ScanOrderTests(unittest.TestCase):
    def test_window_for_long_tables(self) -> None:
        self.assertEqual(scan_window(300), (225, 250))
        order = list(scan_order(300))
        self.assertEqual(order[:3], [225, 226, 227])
        self.assertEqual(order[25], 0)
        self.assertEqual(sorted(order), list(range(300)))

    def test_window_clamped_for_short_tables(self) -> None:
        self.assertEqual(scan_window(20), (0, 20))
        self.assertEqual(scan_window(240), (215, 240))


class PayloadTests(unittest.TestCase):
    def test_keeps_only_priced_items(self) -> None:
        text = json.dumps({"grid": {"items": [{"rawPrice": 10}, {"id": 2}, "x"]}})
        self.assertEqual(parse_ticket_payload(text), [{"rawPrice": 10}])

    def test_rejects_unusable_text(self) -> None:
        self.assertIsNone(parse_ticket_payload(None))
        self.assertIsNone(parse_ticket_payload("no marker here"))
        self.assertIsNone(parse_ticket_payload('{"rawPrice": 1, broken'))
        self.assertIsNone(parse_ticket_payload(json.dumps({"rawPrice": 1})))
        self.assertIsNone(parse_ticket_payload(json.dumps({"grid": {"items": [{"id": 1, "note": "rawPrice"}]}})))

    def test_ticket_row_fields(self) -> None:
        row = TicketRow.from_item({"rawPrice": 99.5, "sectionName": "Upper 1", "rowName": "F", "availableTickets": "4"})
        self.assertEqual((row.raw_price, row.section, row.row, row.quantity), (99.5, "Upper 1", "F", 4))
        self.assertIsNone(row.seat)
        self.assertEqual(row.to_dict()["sectionName"], "Upper 1")


class LocateTests(unittest.IsolatedAsyncioTestCase):
    async def test_hit_inside_window(self) -> None:
        read, seen = _reader({230: _payload(10, 20)})
        idx, items = await locate_ticket_items(300, read)
        self.assertEqual(idx, 230)
        self.assertEqual([it["rawPrice"] for it in items], [10, 20])
        self.assertEqual(seen[0], 225)

    async def test_falls_back_to_full_scan(self) -> None:
        read, seen = _reader({10: _payload(5), 3: "<div>nothing</div>"})
        idx, items = await locate_ticket_items(300, read)
        self.assertEqual(idx, 10)
        self.assertEqual(len(items), 1)
        self.assertEqual(seen[:25], list(range(225, 250)))
        self.assertEqual(seen[25:], list(range(0, 11)))

    async def test_small_table_and_bad_rows(self) -> None:
        rows = {
            0: RuntimeError("detached"),
            1: '{"rawPrice": oops}',
            2: json.dumps({"grid": {"items": [{"id": 1}]}}) + " rawPrice",
            4: _payload(42),
        }
        read, _seen = _reader(rows)
        idx, items = await locate_ticket_items(6, read)
        self.assertEqual(idx, 4)
        self.assertEqual(items[0]["rawPrice"], 42)

    async def test_not_found(self) -> None:
        read, _seen = _reader({})
        with self.assertRaises(ExtractionNotFound):
            await locate_ticket_items(50, read)
        with self.assertRaises(ExtractionNotFound):
            await locate_ticket_items(0, read)


class _Locator:
    def __init__(self, texts):
        self.texts = texts

    async def count(self):
        return len(self.texts)

    @property
    def first(self):
        return self

    def locator(self, selector):
        return self

    def nth(self, i):
        text = self.texts[i]

        class _Row:
            async def text_content(self):
                return text

        return _Row()


class _Page:
    def __init__(self, texts):
        self.texts = texts

    def locator(self, selector):
        return _Locator(self.texts)


class ExtractFromPageTests(unittest.IsolatedAsyncioTestCase):
    async def test_extracts_rows_from_first_tbody(self) -> None:
        rows = await extract_ticket_rows(_Page(["header", _payload(12, 15)]))
        self.assertEqual([r.raw_price for r in rows], [12, 15])
        self.assertEqual(rows[0].quantity, 2)

    async def test_page_without_table(self) -> None:
        with self.assertRaises(ExtractionNotFound):
            await extract_ticket_rows(_Page([]))


if __name__ == "__main__":
    unittest.main()
