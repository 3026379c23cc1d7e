import unittest
from datetime import datetime, timedelta

from core.exceptions import BadRequestError
from core.membership_service import (
    grant_membership,
    normalize_product_type,
    get_membership_summary,
)
from core.models.base import ROLE, PRODUCT_TYPE
from core.models.user import User


def _user(role=ROLE.NORMAL, expiry=None):
    return User(id=1, username="grant_user", password_hash="x", role=role, premium_expiry_date=expiry)


class MembershipGrantTestCase(unittest.TestCase):
    def setUp(self):
        self.now = datetime(2024, 6, 1, 12, 0, 0)

    def test_normal_user_gets_premium_from_now(self):
        user = _user()
        expiry = grant_membership(None, user, 30, PRODUCT_TYPE.PREMIUM, now=self.now)
        self.assertEqual(user.role, ROLE.PREMIUM)
        self.assertEqual(expiry, self.now + timedelta(days=30))
        self.assertEqual(user.premium_expiry_date, expiry)

    def test_active_premium_extends_from_existing_expiry(self):
        old = self.now + timedelta(days=10)
        user = _user(ROLE.PREMIUM, old)
        expiry = grant_membership(None, user, 30, PRODUCT_TYPE.PREMIUM, now=self.now)
        self.assertEqual(expiry, old + timedelta(days=30))

    def test_expired_premium_restarts_from_now(self):
        user = _user(ROLE.PREMIUM, self.now - timedelta(days=3))
        expiry = grant_membership(None, user, 7, PRODUCT_TYPE.PREMIUM, now=self.now)
        self.assertEqual(expiry, self.now + timedelta(days=7))

    def test_lifetime_product_clears_expiry(self):
        user = _user(ROLE.PREMIUM, self.now + timedelta(days=5))
        expiry = grant_membership(None, user, 0, PRODUCT_TYPE.LIFETIME, now=self.now)
        self.assertIsNone(expiry)
        self.assertEqual(user.role, ROLE.LIFETIME)
        self.assertIsNone(user.premium_expiry_date)

    def test_role_comes_only_from_product_type(self):
        user = _user()
        expiry = grant_membership(None, user, 0, PRODUCT_TYPE.PREMIUM, now=self.now)
        self.assertEqual(user.role, ROLE.PREMIUM)
        self.assertEqual(expiry, self.now)

    def test_lifetime_product_with_days_has_no_expiry(self):
        user = _user()
        expiry = grant_membership(None, user, 365, PRODUCT_TYPE.LIFETIME, now=self.now)
        self.assertEqual(user.role, ROLE.LIFETIME)
        self.assertIsNone(expiry)

    def test_lifetime_user_is_not_downgraded(self):
        user = _user(ROLE.LIFETIME)
        expiry = grant_membership(None, user, 30, PRODUCT_TYPE.PREMIUM, now=self.now)
        self.assertEqual(user.role, ROLE.LIFETIME)
        self.assertIsNone(expiry)

    def test_admin_keeps_role_and_gets_expiry(self):
        user = _user(ROLE.ADMIN)
        expiry = grant_membership(None, user, 30, PRODUCT_TYPE.PREMIUM, now=self.now)
        self.assertEqual(user.role, ROLE.ADMIN)
        self.assertEqual(expiry, self.now + timedelta(days=30))

    def test_legacy_product_types_normalize_to_premium(self):
        for value in ("PREMIUM_MONTHLY", "premium_quarterly", "PREMIUM_ANNUAL"):
            self.assertEqual(normalize_product_type(value), PRODUCT_TYPE.PREMIUM)
        with self.assertRaises(BadRequestError):
            normalize_product_type("VIP")

    def test_summary_reports_remaining_days(self):
        user = _user(ROLE.PREMIUM, self.now + timedelta(days=12, hours=1))
        summary = get_membership_summary(user, now=self.now)
        self.assertTrue(summary["isMember"])
        self.assertEqual(summary["remainingDays"], 12)

        expired = get_membership_summary(_user(ROLE.PREMIUM, self.now - timedelta(days=1)), now=self.now)
        self.assertFalse(expired["isMember"])
        self.assertIsNone(expired["remainingDays"])


if __name__ == "__main__":
    unittest.main()
