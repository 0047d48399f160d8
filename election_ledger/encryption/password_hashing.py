# election_ledger/encryption/password_hashing.py

import re
from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from election_ledger.errors import ValidationError

# Password hashing and verification using Argon2id. The encoded hash carries
# its own salt, so the ledger stores a single opaque string per voter.


class PasswordHashingService:
    def __init__(self, time_cost=3, memory_cost=65536, parallelism=4,
                 hash_len=32, salt_len=16):
        self.ph = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
        )

    def hash_password(self, password: str) -> str:
        if not isinstance(password, str) or not password:
            raise ValidationError("Password must be a non-empty string")
        try:
            return self.ph.hash(password)
        except HashingError as e:
            raise ValidationError(f"Password hashing failed: {str(e)}")

    def verify_password(self, password: str, hash_value: str) -> bool:
        try:
            return self.ph.verify(hash_value, password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash_value: str) -> bool:
        return self.ph.check_needs_rehash(hash_value)

    def is_strong_password(self, password: str) -> bool:
        if len(password) < 12:
            return False
        has_upper = bool(re.search(r'[A-Z]', password))
        has_lower = bool(re.search(r'[a-z]', password))
        has_digit = bool(re.search(r'\d', password))
        has_special = bool(re.search(r'[!@#$%^&*(),.?":{}|<>]', password))
        return sum([has_upper, has_lower, has_digit, has_special]) >= 3

