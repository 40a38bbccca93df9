import unittest
from decimal import Decimal

from creatorpay.services.splitter import rate_from_bps, split, split_for_account


class TestSplit(unittest.TestCase):
    def test_default_rate_is_twenty_percent(self):
        s = split(999)
        self.assertEqual(s.commission_cents, 200)
        self.assertEqual(s.creator_net_cents, 799)

    def test_half_cent_rounds_to_platform(self):
        s = split(1, Decimal("0.5"))
        self.assertEqual((s.commission_cents, s.creator_net_cents), (1, 0))

    def test_parts_always_add_up(self):
        for gross in (0, 1, 2, 3, 7, 99, 101, 999, 1001, 123457):
            for rate in ("0", "0.2", "0.15", "0.333", "1"):
                s = split(gross, rate)
                self.assertEqual(s.commission_cents + s.creator_net_cents, gross)
                self.assertGreaterEqual(s.creator_net_cents, 0)

    def test_float_rate_is_taken_at_face_value(self):
        self.assertEqual(split(1000, 0.2).commission_cents, 200)

    def test_rejects_negative_gross(self):
        with self.assertRaises(ValueError):
            split(-1)

    def test_rejects_rate_out_of_range(self):
        with self.assertRaises(ValueError):
            split(100, "1.01")
        with self.assertRaises(ValueError):
            split(100, -0.1)

    def test_as_item(self):
        self.assertEqual(
            split(500).as_item(),
            {"gross_cents": 500, "commission_cents": 100, "creator_net_cents": 400},
        )


class TestAccountRate(unittest.TestCase):
    def test_rate_from_bps(self):
        self.assertEqual(rate_from_bps(1250), Decimal("0.125"))

    def test_account_commission_is_used(self):
        self.assertEqual(split_for_account(1000, {"commission_bps": 1000}).commission_cents, 100)

    def test_missing_account_uses_default(self):
        self.assertEqual(split_for_account(1000, None).commission_cents, 200)
