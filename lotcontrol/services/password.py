import bcrypt

from lotcontrol.core.config import settings


def get_password_hash(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (cost from settings.bcrypt_rounds)."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        # Malformed hash
        return False
