import re
from typing import Optional


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_.]+$")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


def username_error(username: str) -> Optional[str]:
    """Return why ``username`` is not acceptable, or None."""
    if len(username) < USERNAME_MIN_LENGTH or len(username) > USERNAME_MAX_LENGTH:
        return f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters"
    if username.startswith(".") or username.endswith("."):
        return "Username cannot start or end with a dot"
    if ".." in username:
        return "Username cannot contain consecutive dots"
    if not USERNAME_RE.match(username):
        return "Username may only contain letters, numbers, underscores and dots"
    return None
