import os
import sys
import time
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from jose import jwt

from app.auth import AuthError, hash_password, issue_token, public_user, verify_password, verify_token


SECRET = "test-secret"


class TestPasswords(unittest.TestCase):
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("secret123")
        self.assertNotEqual(hashed, "secret123")
        self.assertTrue(verify_password("secret123", hashed))
        self.assertFalse(verify_password("wrong", hashed))
        self.assertFalse(verify_password("secret123", None))
        self.assertFalse(verify_password("secret123", "not-a-bcrypt-hash"))


class TestTokens(unittest.TestCase):
    def test_round_trip(self) -> None:
        token = issue_token({"id": 5, "username": "alice", "role": "admin"}, SECRET)
        claims = verify_token(token, SECRET)
        self.assertEqual(claims["sub"], "5")
        self.assertEqual(claims["username"], "alice")
        self.assertEqual(claims["role"], "admin")
        self.assertGreater(claims["exp"], claims["iat"])

    def test_wrong_secret(self) -> None:
        token = issue_token({"id": 5}, SECRET)
        with self.assertRaises(AuthError):
            verify_token(token, "other-secret")

    def test_expired(self) -> None:
        now = int(time.time())
        token = jwt.encode({"sub": "5", "iat": now - 7200, "exp": now - 3600}, SECRET, algorithm="HS256")
        with self.assertRaises(AuthError):
            verify_token(token, SECRET)

    def test_garbage(self) -> None:
        with self.assertRaises(AuthError):
            verify_token("not.a.token", SECRET)


class TestPublicUser(unittest.TestCase):
    def test_strips_hash(self) -> None:
        user = public_user({"id": 1, "username": "a", "role": "admin", "password_hash": "x"})
        self.assertNotIn("password_hash", user)
        self.assertTrue(user["isAdmin"])
        self.assertFalse(public_user({"id": 2, "role": "user"})["isAdmin"])
        self.assertIsNone(public_user(None))


if __name__ == "__main__":
    unittest.main()
