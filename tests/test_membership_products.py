import unittest
import uuid

from core.db import DB
from core.exceptions import BadRequestError
from core.models.base import PRODUCT_TYPE
from core.models.membership_product import MembershipProduct
from core.membership_service import create_product, update_product


class MembershipProductTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.title = f"产品-{uuid.uuid4().hex[:8]}"

    def tearDown(self):
        try:
            self.session.query(MembershipProduct).filter(MembershipProduct.title == self.title).delete()
            self.session.commit()
        except Exception:
            self.session.rollback()
        self.session.close()

    def test_premium_product_requires_days(self):
        with self.assertRaises(BadRequestError):
            create_product(self.session, title=self.title, price=29.9, duration_days=0, product_type="PREMIUM")
        self.assertEqual(
            self.session.query(MembershipProduct).filter(MembershipProduct.title == self.title).count(),
            0,
        )

    def test_lifetime_product_allows_zero_days(self):
        product = create_product(self.session, title=self.title, price=299, duration_days=0, product_type="LIFETIME")
        self.assertEqual(product.type, PRODUCT_TYPE.LIFETIME)
        self.assertEqual(product.duration_days, 0)

    def test_update_cannot_zero_premium_days(self):
        product = create_product(self.session, title=self.title, price=29.9, duration_days=30, product_type="PREMIUM")
        with self.assertRaises(BadRequestError):
            update_product(self.session, product.id, {"duration_days": 0})
        self.session.rollback()

        lifetime = create_product(self.session, title=self.title, price=299, duration_days=0, product_type="LIFETIME")
        with self.assertRaises(BadRequestError):
            update_product(self.session, lifetime.id, {"type": "PREMIUM"})
        self.session.rollback()

        updated = update_product(self.session, lifetime.id, {"type": "PREMIUM", "duration_days": 365})
        self.assertEqual(updated.type, PRODUCT_TYPE.PREMIUM)
        self.assertEqual(updated.duration_days, 365)


if __name__ == "__main__":
    unittest.main()
