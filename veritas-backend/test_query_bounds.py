"""
Regression tests for row bound detection, injection and preview rewriting.

No DB required.
"""

import unittest
from query_bounds import (
    BoundStyle,
    extract_row_bound,
    has_row_bound,
    inject_row_bound,
    to_preview,
)


class TestExtractRowBound(unittest.TestCase):
    """Outermost bound detection across TOP / FETCH / LIMIT forms."""

    def test_top(self):
        self.assertEqual(extract_row_bound("SELECT TOP 10 * FROM t"), 10)

    def test_top_parenthesized(self):
        self.assertEqual(extract_row_bound("SELECT TOP (7) * FROM t"), 7)

    def test_distinct_top(self):
        self.assertEqual(extract_row_bound("SELECT DISTINCT TOP 3 Name FROM t"), 3)

    def test_fetch_first(self):
        self.assertEqual(extract_row_bound("SELECT a FROM t ORDER BY a FETCH FIRST 15 ROWS ONLY"), 15)

    def test_limit(self):
        self.assertEqual(extract_row_bound("SELECT a FROM t LIMIT 20"), 20)

    def test_mysql_offset_limit(self):
        self.assertEqual(extract_row_bound("SELECT a FROM t LIMIT 40, 10"), 10)

    def test_no_bound(self):
        self.assertIsNone(extract_row_bound("SELECT a FROM t"))
        self.assertIsNone(extract_row_bound(""))

    def test_subquery_bound_ignored(self):
        self.assertFalse(has_row_bound("SELECT * FROM (SELECT a FROM t LIMIT 5) x"))

    def test_limit_inside_string_ignored(self):
        self.assertFalse(has_row_bound("SELECT a FROM t WHERE note = 'LIMIT 5'"))

    def test_column_named_top_is_not_a_bound(self):
        self.assertFalse(has_row_bound("SELECT top_score FROM t"))

    def test_overflowing_number_is_not_a_bound(self):
        self.assertIsNone(extract_row_bound("SELECT TOP 1e400 Id FROM t"))
        self.assertIsNone(extract_row_bound("SELECT a FROM t LIMIT 1e400"))
        self.assertIsNone(extract_row_bound("SELECT a FROM t ORDER BY a FETCH FIRST 1e999 ROWS ONLY"))

    def test_exponent_number_with_finite_value(self):
        self.assertEqual(extract_row_bound("SELECT TOP 1e2 Id FROM t"), 100)


class TestInjectRowBound(unittest.TestCase):

    def test_top_after_select(self):
        self.assertEqual(inject_row_bound("SELECT a FROM t", 100), "SELECT TOP 100 a FROM t")

    def test_top_after_all(self):
        self.assertEqual(inject_row_bound("SELECT ALL a FROM t", 5), "SELECT ALL TOP 5 a FROM t")

    def test_top_preserves_formatting(self):
        sql = "SELECT\n    a,\n    b\nFROM t"
        self.assertEqual(inject_row_bound(sql, 10), "SELECT\n    TOP 10 a,\n    b\nFROM t")

    def test_limit_after_order_by(self):
        sql = "SELECT a FROM t ORDER BY a DESC"
        result = inject_row_bound(sql, 50, BoundStyle.LIMIT)
        self.assertEqual(result, "SELECT a FROM t ORDER BY a DESC LIMIT 50")

    def test_limit_before_trailing_semicolon(self):
        result = inject_row_bound("SELECT a FROM t;  ", 50, BoundStyle.LIMIT)
        self.assertEqual(result, "SELECT a FROM t LIMIT 50;  ")

    def test_fetch(self):
        result = inject_row_bound("SELECT a FROM t ORDER BY a", 9, BoundStyle.FETCH)
        self.assertEqual(result, "SELECT a FROM t ORDER BY a FETCH FIRST 9 ROWS ONLY")

    def test_top_requires_select(self):
        with self.assertRaises(ValueError):
            inject_row_bound("WITH x AS (SELECT 1) SELECT * FROM x", 10)

    def test_multiple_statements_rejected(self):
        with self.assertRaises(ValueError):
            inject_row_bound("SELECT 1; SELECT 2", 10, BoundStyle.LIMIT)


class TestToPreview(unittest.TestCase):
    """Preview rewriting: replace or inject a bound of row_cap rows."""

    def test_existing_top_replaced(self):
        self.assertEqual(
            to_preview("SELECT TOP 100 Name FROM dbo.Customers", 5),
            "SELECT TOP 5 Name FROM dbo.Customers",
        )

    def test_parenthesized_top_replaced(self):
        self.assertEqual(to_preview("SELECT TOP (100) a FROM t", 5), "SELECT TOP (5) a FROM t")

    def test_top_percent_becomes_plain_top(self):
        self.assertEqual(
            to_preview("SELECT TOP 50 PERCENT a FROM t", 5),
            "SELECT TOP 5 a FROM t",
        )

    def test_missing_bound_injected(self):
        self.assertEqual(to_preview("SELECT a FROM t", 5), "SELECT TOP 5 a FROM t")

    def test_limit_replaced(self):
        self.assertEqual(to_preview("SELECT a FROM t LIMIT 100", 5), "SELECT a FROM t LIMIT 5")

    def test_fetch_replaced(self):
        self.assertEqual(
            to_preview("SELECT a FROM t ORDER BY a FETCH NEXT 100 ROWS ONLY", 5),
            "SELECT a FROM t ORDER BY a FETCH NEXT 5 ROWS ONLY",
        )

    def test_injection_uses_style(self):
        self.assertEqual(
            to_preview("SELECT a FROM t", 5, BoundStyle.LIMIT),
            "SELECT a FROM t LIMIT 5",
        )

    def test_idempotent(self):
        for sql in (
            "SELECT a FROM t",
            "SELECT TOP 100 a FROM t",
            "SELECT TOP 10 PERCENT a FROM t",
            "SELECT DISTINCT a FROM t WHERE b = 'TOP 3'",
        ):
            once = to_preview(sql, 5)
            self.assertEqual(to_preview(once, 5), once, sql)

    def test_invalid_row_cap(self):
        for cap in (0, -1, True, 2.5):
            with self.assertRaises(ValueError):
                to_preview("SELECT a FROM t", cap)

    def test_empty_sql(self):
        with self.assertRaises(ValueError):
            to_preview("   ", 5)


if __name__ == "__main__":
    unittest.main()
