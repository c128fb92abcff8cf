"""Tests for shared value objects."""

from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase

from shared.domain.value_objects import Money, StayPeriod


class MoneyTests(SimpleTestCase):
    def test_amount_is_coerced_to_decimal(self):
        money = Money(100.5, 'usd')
        self.assertEqual(money.amount, Decimal('100.5'))
        self.assertEqual(money.currency, 'USD')

    def test_multiplying_by_nights(self):
        self.assertEqual(Money(Decimal('100'), 'USD') * 3, Money(Decimal('300'), 'USD'))

    def test_cannot_multiply_by_float_or_bool(self):
        with self.assertRaises(TypeError):
            Money(Decimal('10')) * 1.5
        with self.assertRaises(TypeError):
            Money(Decimal('10')) * True

    def test_adding_different_currencies_fails(self):
        with self.assertRaises(ValueError):
            Money(Decimal('1'), 'USD') + Money(Decimal('1'), 'KZT')

    def test_negative_and_unsupported(self):
        with self.assertRaises(ValueError):
            Money(Decimal('-1'))
        with self.assertRaises(ValueError):
            Money(Decimal('1'), 'XYZ')

    def test_minor_units(self):
        self.assertEqual(Money(Decimal('12.34'), 'KZT').minor_units(), 1234)


class StayPeriodTests(SimpleTestCase):
    def test_nights(self):
        self.assertEqual(StayPeriod(date(2025, 6, 1), date(2025, 6, 4)).nights, 3)

    def test_empty_or_inverted_period_rejected(self):
        with self.assertRaises(ValueError):
            StayPeriod(date(2025, 6, 4), date(2025, 6, 4))
        with self.assertRaises(ValueError):
            StayPeriod(date(2025, 6, 5), date(2025, 6, 4))

    def test_overlap_is_half_open(self):
        stay = StayPeriod(date(2025, 6, 4), date(2025, 6, 10))

        self.assertTrue(stay.overlaps_with(StayPeriod(date(2025, 6, 1), date(2025, 6, 5))))
        self.assertTrue(stay.overlaps_with(StayPeriod(date(2025, 6, 5), date(2025, 6, 6))))
        self.assertFalse(stay.overlaps_with(StayPeriod(date(2025, 6, 1), date(2025, 6, 4))))
        self.assertFalse(stay.overlaps_with(StayPeriod(date(2025, 6, 10), date(2025, 6, 12))))

    def test_overlap_is_symmetric(self):
        a = StayPeriod(date(2025, 6, 1), date(2025, 6, 5))
        b = StayPeriod(date(2025, 6, 4), date(2025, 6, 8))
        self.assertEqual(a.overlaps_with(b), b.overlaps_with(a))
