"""
Tests for the immutable schema catalog.
"""

import unittest
from schema_catalog import Column, ForeignKey, SchemaCatalog, Table, View


def make_catalog():
    customers = Table("dbo", "Customers", columns=(
        Column("Id", "INTEGER", nullable=False, primary_key=True),
        Column("Name", "NVARCHAR(100)", max_length=100),
    ))
    orders = Table(
        "sales", "Orders",
        columns=(Column("Id", "INTEGER", primary_key=True), Column("CustomerId", "INTEGER")),
        foreign_keys=(ForeignKey("FK_Orders_Customers", "CustomerId", "dbo.Customers", "Id"),),
    )
    dotted = Table("dbo", "Order.Archive")
    view = View("dbo", "ActiveCustomers", columns=(Column("Id", "INTEGER"),))
    return SchemaCatalog(tables=(customers, orders, dotted), views=(view,), database_name="Shop")


class TestSchemaCatalog(unittest.TestCase):

    def setUp(self):
        self.catalog = make_catalog()

    def test_len_and_iteration_order(self):
        self.assertEqual(len(self.catalog), 4)
        self.assertEqual(
            self.catalog.object_names(),
            ["dbo.Customers", "sales.Orders", "dbo.Order.Archive", "dbo.ActiveCustomers"],
        )

    def test_find_qualified_case_insensitive(self):
        self.assertEqual(self.catalog.find("DBO.customers").name, "Customers")

    def test_find_bare_name(self):
        self.assertEqual(self.catalog.find("orders").full_name, "sales.Orders")

    def test_find_bracketed(self):
        self.assertIsNotNone(self.catalog.find("[sales].[Orders]"))

    def test_find_three_part_name(self):
        self.assertIsNotNone(self.catalog.find("Shop.dbo.Customers"))
        self.assertIsNotNone(self.catalog.find("[shop].[dbo].[customers]"))

    def test_other_database_not_found(self):
        self.assertIsNone(self.catalog.find("OtherDb.dbo.Customers"))
        self.assertIsNone(self.catalog.resolve(["Archive", "sales", "Orders"]))

    def test_four_part_name_not_found(self):
        self.assertIsNone(self.catalog.find("LinkedSrv.Shop.dbo.Customers"))

    def test_three_part_name_without_database_name(self):
        catalog = SchemaCatalog(tables=(Table("dbo", "Customers"),))
        self.assertIsNotNone(catalog.find("dbo.Customers"))
        self.assertIsNone(catalog.find("Shop.dbo.Customers"))

    def test_wrong_schema_not_found(self):
        self.assertIsNone(self.catalog.find("dbo.Orders"))
        self.assertFalse(self.catalog.contains("Invoices"))

    def test_resolve_name_with_dot(self):
        self.assertIsNotNone(self.catalog.resolve(["dbo", "Order.Archive"]))

    def test_view_kind(self):
        self.assertEqual(self.catalog.find("dbo.ActiveCustomers").kind, "view")

    def test_columns(self):
        customers = self.catalog.find("dbo.Customers")
        self.assertEqual(customers.primary_key_columns, ["Id"])
        self.assertEqual(customers.column("name").max_length, 100)
        self.assertIsNone(customers.column("missing"))

    def test_duplicate_identity_rejected(self):
        with self.assertRaises(ValueError):
            SchemaCatalog(tables=(Table("dbo", "T"), Table("DBO", "t")))

    def test_same_name_different_schema_allowed(self):
        catalog = SchemaCatalog(tables=(Table("dbo", "T"), Table("sales", "T")))
        self.assertEqual(len(catalog), 2)

    def test_immutable(self):
        with self.assertRaises(Exception):
            self.catalog.tables = ()

    def test_prompt_text(self):
        text = self.catalog.to_prompt_text()
        self.assertIn("TABLE dbo.Customers", text)
        self.assertIn("Id: INTEGER (PK, NOT NULL)", text)
        self.assertIn("FK CustomerId -> dbo.Customers.Id", text)
        self.assertIn("VIEW dbo.ActiveCustomers", text)

    def test_empty_prompt_text(self):
        self.assertEqual(SchemaCatalog().to_prompt_text(), "No tables found in database.")

    def test_summary(self):
        summary = self.catalog.summary()
        self.assertEqual(summary["table_count"], 3)
        self.assertEqual(summary["view_count"], 1)
        self.assertEqual(summary["database_name"], "Shop")
        self.assertEqual(summary["objects"][0]["columns"][0]["name"], "Id")


if __name__ == "__main__":
    unittest.main()
