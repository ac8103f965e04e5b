import unittest
from datetime import date
from decimal import Decimal

from fintrack.models import (
    Account,
    CardExpense,
    Expense,
    Income,
    Transfer,
    build_transaction,
    migrate_legacy_record,
    normalize_asset_type,
    transaction_from_record,
)


class TransactionFromRecordTests(unittest.TestCase):
    def test_reads_camel_case_installment_record(self) -> None:
        transaction = transaction_from_record(
            {
                "id": 7,
                "type": "expense",
                "value": "50.5",
                "date": "2024-03-01",
                "accountId": 1,
                "isInstallment": True,
                "installmentTotal": "3",
                "installmentsPaid": 1,
            }
        )

        self.assertIsInstance(transaction, Expense)
        self.assertEqual(transaction.amount, Decimal("50.5"))
        self.assertEqual(transaction.date, date(2024, 3, 1))
        self.assertEqual(transaction.installment_total, 3)
        self.assertEqual(transaction.installments_paid, 1)
        self.assertTrue(transaction.has_installments)

    def test_single_record_drops_installment_total(self) -> None:
        transaction = transaction_from_record(
            {"kind": "income", "amount": "10", "date": "2024-03-01", "installment_total": 4}
        )

        self.assertIsInstance(transaction, Income)
        self.assertIsNone(transaction.installment_total)
        self.assertFalse(transaction.has_installments)

    def test_unreadable_date_is_kept_as_none(self) -> None:
        transaction = transaction_from_record({"kind": "expense", "amount": "10", "date": "soon"})

        self.assertIsNone(transaction.date)

    def test_transfer_keeps_destination(self) -> None:
        transaction = transaction_from_record(
            {
                "kind": "transfer",
                "amount": "100",
                "date": "2024-03-01",
                "from_account_id": 1,
                "to_account_id": 2,
            }
        )

        self.assertIsInstance(transaction, Transfer)
        self.assertEqual(transaction.account_id, 1)
        self.assertEqual(transaction.to_account_id, 2)

    def test_rejects_unknown_or_missing_kind(self) -> None:
        with self.assertRaises(ValueError):
            transaction_from_record({"kind": "refund", "amount": "1", "date": "2024-01-01"})
        with self.assertRaises(ValueError):
            transaction_from_record({"amount": "1", "date": "2024-01-01"})

    def test_build_transaction_ignores_destination_for_non_transfers(self) -> None:
        transaction = build_transaction(
            "Card-Expense",
            id=1,
            amount=Decimal("5"),
            date=date(2024, 1, 1),
            to_account_id=3,
        )

        self.assertIsInstance(transaction, CardExpense)
        self.assertFalse(hasattr(transaction, "to_account_id"))


class LegacyMigrationTests(unittest.TestCase):
    def _record(self, **overrides):
        record = {
            "id": 1,
            "kind": "expense",
            "amount": "90",
            "date": "2024-03-01",
            "account_id": 2,
            "description": "Mercado",
        }
        record.update(overrides)
        return record

    def test_card_keyword_becomes_card_expense(self) -> None:
        migrated = migrate_legacy_record(self._record(description="Fatura de março"), [2])

        self.assertIsInstance(migrated, CardExpense)
        self.assertEqual(migrated.amount, Decimal("90"))

    def test_installment_on_card_becomes_card_expense(self) -> None:
        migrated = migrate_legacy_record(
            self._record(is_installment=True, installment_total=3), [2]
        )

        self.assertIsInstance(migrated, CardExpense)
        self.assertEqual(migrated.installment_total, 3)

    def test_plain_expenses_stay_expenses(self) -> None:
        self.assertIsInstance(migrate_legacy_record(self._record(), [2]), Expense)
        self.assertIsInstance(
            migrate_legacy_record(self._record(description="Parcela sofá"), [5]), Expense
        )

    def test_other_kinds_are_untouched(self) -> None:
        migrated = migrate_legacy_record(self._record(kind="income", description="fatura"), [2])

        self.assertIsInstance(migrated, Income)


class AccountAndAssetTests(unittest.TestCase):
    def test_credit_card_requires_positive_limit(self) -> None:
        self.assertTrue(Account(id=1, name="Card", card_limit=Decimal("500")).is_credit_card)
        self.assertFalse(Account(id=2, name="Bank", card_limit=Decimal("0")).is_credit_card)
        self.assertFalse(Account(id=3, name="Cash").is_credit_card)

    def test_asset_type_aliases(self) -> None:
        self.assertEqual(normalize_asset_type("B3"), "listed_equity")
        self.assertEqual(normalize_asset_type(" Crypto "), "crypto")
        with self.assertRaises(ValueError):
            normalize_asset_type("bond")


if __name__ == "__main__":
    unittest.main()
