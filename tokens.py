import logging

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from errors import Unauthorized

logger = logging.getLogger(__name__)

VOTER_TOKEN_SALT = "voter-session"
VOTER_COOKIE_NAME = "token"


def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=VOTER_TOKEN_SALT)


def issue_voter_token(email, matric):
    """Sign a credential asserting that ``email``/``matric`` passed OTP verification."""
    return _serializer().dumps({"email": email, "matric": matric, "verified": True})


def load_voter_token(token):
    """Return the credential payload, or raise Unauthorized.

    Signature and age are checked on every call.
    """
    if not token:
        raise Unauthorized("Please verify your email before voting")

    max_age = int(current_app.config["SESSION_MAX_AGE_SECONDS"])
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthorized("Your session has expired. Please sign in again.")
    except BadSignature:
        logger.warning("Rejected voter token with a bad signature")
        raise Unauthorized("Invalid session")

    if not isinstance(payload, dict) or payload.get("verified") is not True:
        raise Unauthorized("Invalid session")
    if not payload.get("email") or not payload.get("matric"):
        raise Unauthorized("Invalid session")
    return payload
