"""Password hashing with bcrypt."""

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a password against a stored hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def password_needs_rehash(hashed_password: str) -> bool:
    """True when the hash was made with fewer rounds than BCRYPT_ROUNDS.

    bcrypt hashes look like ``$2b$12$...`` where 12 is the cost.
    """
    try:
        return int(hashed_password.split("$")[2]) < BCRYPT_ROUNDS
    except (ValueError, IndexError):
        return True
