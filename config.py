import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# Security key
SECRET_KEY = os.getenv("SECRET_KEY", "devkey")

# Database (SQLite by default)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///votes.db")

# Allowed student email domain
ALLOWED_EMAIL_DOMAIN = os.getenv("ALLOWED_EMAIL_DOMAIN", "student.babcock.edu.ng")

# OTP windows, in seconds
OTP_COOLDOWN_SECONDS = int(os.getenv("OTP_COOLDOWN_SECONDS", 60 * 60))
OTP_EXPIRY_SECONDS = int(os.getenv("OTP_EXPIRY_SECONDS", 10 * 60))

# Voter session credential lifetime
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", 60 * 60))

# Voting window. VOTING_OPEN is only the fallback; the "voting_open" setting row wins.
VOTING_OPEN = os.getenv("VOTING_OPEN", "false").lower() in ("1", "true", "yes", "open")
VOTING_START = os.getenv("VOTING_START")
VOTING_END = os.getenv("VOTING_END")

# Email settings
SMTP_SERVER = os.getenv("SMTP_SERVER", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
FROM_EMAIL = os.getenv("FROM_EMAIL", EMAIL_USER)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def default_config():
    """Settings applied to every app before per-instance overrides."""
    return {
        "SECRET_KEY": SECRET_KEY,
        "SQLALCHEMY_DATABASE_URI": DATABASE_URL,
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true",
        "ALLOWED_EMAIL_DOMAIN": ALLOWED_EMAIL_DOMAIN,
        "OTP_COOLDOWN_SECONDS": OTP_COOLDOWN_SECONDS,
        "OTP_EXPIRY_SECONDS": OTP_EXPIRY_SECONDS,
        "SESSION_MAX_AGE_SECONDS": SESSION_MAX_AGE_SECONDS,
        "VOTING_OPEN": VOTING_OPEN,
        "VOTING_START": VOTING_START,
        "VOTING_END": VOTING_END,
        "SMTP_SERVER": SMTP_SERVER,
        "SMTP_PORT": SMTP_PORT,
        "EMAIL_USER": EMAIL_USER,
        "EMAIL_PASS": EMAIL_PASS,
        "FROM_EMAIL": FROM_EMAIL,
        "LOG_LEVEL": LOG_LEVEL,
    }


@dataclass(frozen=True)
class OtpPolicy:
    cooldown: timedelta
    expiry: timedelta
    allowed_domain: str

    @classmethod
    def from_config(cls, config):
        return cls(
            cooldown=timedelta(seconds=int(config["OTP_COOLDOWN_SECONDS"])),
            expiry=timedelta(seconds=int(config["OTP_EXPIRY_SECONDS"])),
            allowed_domain=(config.get("ALLOWED_EMAIL_DOMAIN") or "").lower(),
        )


def parse_voting_time(value, name="voting time"):
    """Parse an ISO 8601 time into naive UTC, the form timestamps are compared in.

    Offsets (including a trailing ``Z``) are converted to UTC; values without
    one are taken as UTC already.
    """
    if not value:
        return None
    if not isinstance(value, datetime):
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid {name}: {text!r} is not an ISO 8601 datetime")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def voting_is_open(config, now, stored_flag=None):
    """Combine the stored flag (if any) with the configured window.

    Called on every request, so a flag flipped by an admin takes effect on the
    next request without a restart.
    """
    is_open = config.get("VOTING_OPEN", False) if stored_flag is None else bool(stored_flag)
    if not is_open:
        return False

    start = parse_voting_time(config.get("VOTING_START"), "VOTING_START")
    end = parse_voting_time(config.get("VOTING_END"), "VOTING_END")
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True
