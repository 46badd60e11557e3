from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError
from fastapi import Request


class PasswordHashingService:
    """Salted argon2id hashes with fixed cost parameters."""

    def __init__(self):
        self.ph = PasswordHasher(
            time_cost=3,
            memory_cost=65536,
            parallelism=4,
            hash_len=32,
            salt_len=16,
        )

    def hash_password(self, password: str) -> str:
        try:
            return self.ph.hash(password)
        except HashingError as e:
            raise ValueError(f"Password hashing failed: {e}") from e

    def verify_password(self, password: str, hash_value: str) -> bool:
        try:
            return self.ph.verify(hash_value, password)
        except (VerificationError, InvalidHashError):
            return False


passwords = PasswordHashingService()


# ----------------------------
# Session gate
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_id"))


def login_session(request: Request, admin_id: str, username: str) -> None:
    request.session.clear()
    request.session["admin_id"] = admin_id
    request.session["admin_user"] = username


def logout_session(request: Request) -> None:
    request.session.clear()
