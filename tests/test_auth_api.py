import unittest
import uuid

import jwt
from fastapi import HTTPException

from core.auth import ALGORITHM, SECRET_KEY, get_current_user
from core.db import DB
from core.models.base import ROLE
from core.models.user import User
from apis.auth import LoginRequest, RegisterRequest, login, register


class AuthApiTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        DB.create_tables()
        self.username = f"auth_{uuid.uuid4().hex[:8]}"

    def tearDown(self):
        session = DB.get_session()
        try:
            session.query(User).filter(User.username == self.username).delete()
            session.commit()
        finally:
            session.close()

    async def test_register_then_login(self):
        result = await register(RegisterRequest(username=self.username, password="demo123456"))
        self.assertEqual(result["code"], 0)
        self.assertEqual(result["data"]["user"]["role"], ROLE.NORMAL)

        logged = await login(LoginRequest(username=self.username, password="demo123456"))
        token = logged["data"]["access_token"]
        self.assertEqual(jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])["sub"], self.username)

        principal = await get_current_user(token)
        self.assertEqual(principal["username"], self.username)

    async def test_duplicate_username(self):
        await register(RegisterRequest(username=self.username, password="demo123456"))
        with self.assertRaises(HTTPException) as ctx:
            await register(RegisterRequest(username=self.username, password="demo123456"))
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_wrong_password(self):
        await register(RegisterRequest(username=self.username, password="demo123456"))
        with self.assertRaises(HTTPException) as ctx:
            await login(LoginRequest(username=self.username, password="wrong-pass"))
        self.assertEqual(ctx.exception.status_code, 401)

    async def test_invalid_token(self):
        with self.assertRaises(HTTPException) as ctx:
            await get_current_user("not-a-token")
        self.assertEqual(ctx.exception.status_code, 401)


if __name__ == "__main__":
    unittest.main()
