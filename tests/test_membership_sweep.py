import unittest
import uuid
from datetime import datetime, timedelta

from core.db import DB
from core.models.base import ROLE
from core.models.user import User
from core.membership_service import sweep_expired_memberships
from jobs.membership import run_membership_sweep, seconds_until_next_run


class MembershipSweepTestCase(unittest.TestCase):
    def setUp(self):
        DB.create_tables()
        self.session = DB.get_session()
        self.now = datetime.now()
        self.user_ids = {}
        for name, role, expiry in (
            ("expired", ROLE.PREMIUM, self.now - timedelta(days=1)),
            ("active", ROLE.PREMIUM, self.now + timedelta(days=5)),
            ("lifetime", ROLE.LIFETIME, None),
            ("normal", ROLE.NORMAL, None),
        ):
            user = User(
                username=f"s_{name}_{uuid.uuid4().hex[:8]}",
                password_hash="hashed",
                role=role,
                premium_expiry_date=expiry,
                is_active=True,
                created_at=self.now,
                updated_at=self.now,
            )
            self.session.add(user)
            self.session.commit()
            self.user_ids[name] = user.id

    def tearDown(self):
        try:
            self.session.query(User).filter(User.id.in_(list(self.user_ids.values()))).delete(synchronize_session=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
        self.session.close()

    def _load(self, name):
        return self.session.query(User).filter(User.id == self.user_ids[name]).first()

    def test_sweep_downgrades_only_expired_premium(self):
        result = sweep_expired_memberships(self.session, now=self.now)
        self.assertGreaterEqual(result["total"], 1)

        expired = self._load("expired")
        self.assertEqual(expired.role, ROLE.NORMAL)
        self.assertIsNone(expired.premium_expiry_date)
        self.assertEqual(self._load("active").role, ROLE.PREMIUM)
        self.assertEqual(self._load("lifetime").role, ROLE.LIFETIME)
        self.assertEqual(self._load("normal").role, ROLE.NORMAL)

    def test_sweep_is_idempotent(self):
        sweep_expired_memberships(self.session, now=self.now)
        again = sweep_expired_memberships(self.session, now=self.now)
        expired = self._load("expired")
        self.assertNotIn(expired.username, again["users"])
        self.assertEqual(expired.role, ROLE.NORMAL)

    def test_run_membership_sweep_uses_own_session(self):
        result = run_membership_sweep(now=self.now)
        self.assertIn("total", result)
        self.session.expire_all()
        self.assertEqual(self._load("expired").role, ROLE.NORMAL)

    def test_seconds_until_next_run(self):
        base = datetime(2024, 6, 1, 0, 30, 0)
        self.assertEqual(seconds_until_next_run(1, now=base), 30 * 60)
        later = datetime(2024, 6, 1, 2, 0, 0)
        self.assertEqual(seconds_until_next_run(1, now=later), 23 * 3600)


if __name__ == "__main__":
    unittest.main()
