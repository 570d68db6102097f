from werkzeug.security import generate_password_hash

MIN_PASSWORD_LENGTH = 8


def hash_password(pw: str) -> str:
    return generate_password_hash(pw)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()
