import unittest
from datetime import date

from fintrack.billing_cycle import (
    BillingCycle,
    belongs_to_current_invoice,
    current_cycle,
    cycle_for,
    invoice_due_date,
)


class CurrentCycleTests(unittest.TestCase):
    def test_before_closing_day(self) -> None:
        self.assertEqual(
            current_cycle(10, date(2024, 3, 5)),
            BillingCycle(last_closing=date(2024, 2, 10), next_closing=date(2024, 3, 10)),
        )

    def test_on_closing_day_stays_in_cycle(self) -> None:
        cycle = current_cycle(10, date(2024, 3, 10))

        self.assertEqual(cycle.next_closing, date(2024, 3, 10))

    def test_after_closing_day_rolls_forward(self) -> None:
        self.assertEqual(
            current_cycle(10, date(2024, 3, 11)),
            BillingCycle(last_closing=date(2024, 3, 10), next_closing=date(2024, 4, 10)),
        )

    def test_closing_day_past_month_end_is_clamped(self) -> None:
        self.assertEqual(
            current_cycle(31, date(2024, 4, 15)),
            BillingCycle(last_closing=date(2024, 3, 31), next_closing=date(2024, 4, 30)),
        )
        self.assertEqual(
            current_cycle(31, date(2024, 2, 10)),
            BillingCycle(last_closing=date(2024, 1, 31), next_closing=date(2024, 2, 29)),
        )

    def test_closing_day_31_in_30_day_month_membership(self) -> None:
        cycle = current_cycle(31, date(2024, 4, 15))

        self.assertTrue(cycle.contains(date(2024, 4, 30)))
        self.assertTrue(cycle.contains(date(2024, 4, 1)))
        self.assertFalse(cycle.contains(date(2024, 5, 1)))
        self.assertFalse(cycle.contains(date(2024, 3, 31)))

    def test_rejects_invalid_closing_day(self) -> None:
        for day in (0, 32):
            with self.subTest(day=day):
                with self.assertRaises(ValueError):
                    current_cycle(day, date(2024, 3, 1))


class CycleMembershipTests(unittest.TestCase):
    def test_window_is_half_open(self) -> None:
        cycle = current_cycle(10, date(2024, 3, 5))

        self.assertTrue(cycle.contains(date(2024, 3, 10)))
        self.assertTrue(cycle.contains(date(2024, 2, 11)))
        self.assertFalse(cycle.contains(date(2024, 2, 10)))
        self.assertFalse(cycle.contains(date(2024, 3, 11)))

    def test_expense_after_closing_joins_next_invoice(self) -> None:
        self.assertEqual(cycle_for(10, date(2024, 3, 12)).next_closing, date(2024, 4, 10))
        self.assertFalse(belongs_to_current_invoice(10, date(2024, 3, 12), date(2024, 3, 5)))
        self.assertTrue(belongs_to_current_invoice(10, date(2024, 3, 1), date(2024, 3, 5)))


class DueDateTests(unittest.TestCase):
    def test_due_date_follows_closing(self) -> None:
        cycle = current_cycle(10, date(2024, 3, 5))

        self.assertEqual(invoice_due_date(cycle, 20), date(2024, 3, 20))
        self.assertEqual(invoice_due_date(cycle, 5), date(2024, 4, 5))
        self.assertEqual(invoice_due_date(cycle, 10), date(2024, 4, 10))

    def test_rejects_invalid_due_day(self) -> None:
        with self.assertRaises(ValueError):
            invoice_due_date(current_cycle(10, date(2024, 3, 5)), 0)


if __name__ == "__main__":
    unittest.main()
