import unittest

from gifts.amounts import from_base_units, to_base_units
from gifts.errors import GiftValidationError


class AmountConversionTests(unittest.TestCase):
    def test_parses_decimal_string_into_base_units(self):
        self.assertEqual(to_base_units('12.50'), 12_500_000)
        self.assertEqual(to_base_units('10'), 10_000_000)
        self.assertEqual(to_base_units('0.000001'), 1)

    def test_renders_base_units_with_two_decimals_minimum(self):
        self.assertEqual(from_base_units(12_500_000), '12.50')
        self.assertEqual(from_base_units(10_000_000), '10.00')
        self.assertEqual(from_base_units(1), '0.000001')
        self.assertEqual(from_base_units(1_234_560), '1.23456')

    def test_round_trip_preserves_representable_amounts(self):
        for text in ('12.50', '0.01', '999999.99', '1.234567', '0.10', '5000.00'):
            with self.subTest(amount=text):
                self.assertEqual(from_base_units(to_base_units(text)), text)

    def test_non_canonical_input_comes_back_in_canonical_form(self):
        for text, canonical in (('12.5', '12.50'), ('10', '10.00'), ('0.100000', '0.10')):
            with self.subTest(amount=text):
                rendered = from_base_units(to_base_units(text))
                self.assertEqual(rendered, canonical)
                self.assertEqual(to_base_units(rendered), to_base_units(text))

    def test_rejects_non_positive_amounts(self):
        for text in ('0', '0.00', '-1', '-0.5'):
            with self.subTest(amount=text):
                with self.assertRaises(GiftValidationError):
                    to_base_units(text)

    def test_rejects_excess_precision(self):
        with self.assertRaises(GiftValidationError):
            to_base_units('1.0000001')

    def test_rejects_garbage(self):
        for text in ('abc', '', 'NaN', 'Infinity', '1e'):
            with self.subTest(amount=text):
                with self.assertRaises(GiftValidationError):
                    to_base_units(text)

    def test_respects_custom_decimals(self):
        self.assertEqual(to_base_units('1.5', decimals=2), 150)
        self.assertEqual(from_base_units(150, decimals=2), '1.50')
