import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError

from errors import (
    AlreadyVoted,
    DeliveryError,
    Expired,
    InvalidCode,
    InvalidInput,
    NotFound,
    RateLimited,
    StorageError,
    StudentLookupFailed,
)
from models import OtpCode, Student, db, utcnow
from tokens import issue_voter_token

logger = logging.getLogger(__name__)


def _text(value, field):
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string")
    return value.strip()


def normalize_email(email):
    return _text(email, "Email").lower()


def normalize_matric(matric):
    return _text(matric, "Matric number").upper()


def generate_code():
    """Uniform over 100000..999999."""
    return str(100000 + secrets.randbelow(900000))


def _human_wait(seconds):
    minutes = (seconds + 59) // 60
    if minutes >= 60 and minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" + ("s" if hours != 1 else "")
    return f"{minutes} minute" + ("s" if minutes != 1 else "")


def issue_otp(email, matric, policy, sender, now=None):
    """Create and send a new OTP for a student who has not voted yet.

    ``sender`` is a callable ``(to_email, code)`` that raises on delivery
    failure. The OTP row is committed before delivery is attempted, so a failed
    send leaves a usable (but undelivered) code behind.
    """
    email = normalize_email(email)
    matric = normalize_matric(matric)
    if not email or not matric:
        raise InvalidInput("Email and matric number are required")
    if policy.allowed_domain and not email.endswith("@" + policy.allowed_domain):
        raise InvalidInput("Input your school email")

    now = now or utcnow()

    try:
        student = Student.query.filter_by(matric_number=matric).first()
        last_otp = (
            OtpCode.query.filter_by(email=email)
            .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
            .first()
        )
    except SQLAlchemyError:
        logger.exception("Database error checking student %s", matric)
        raise StorageError("Database error checking student status")

    if student is None:
        raise NotFound("Student not found")
    if (student.email or "").lower() != email:
        logger.warning("OTP requested for %s with an email not on the roster", matric)
        raise InvalidInput("This email does not match the student record for that matric number")
    if student.has_voted:
        raise AlreadyVoted("This student has already voted")

    if last_otp is not None:
        available_at = last_otp.created_at + policy.cooldown
        if available_at > now:
            remaining = int((available_at - now).total_seconds())
            raise RateLimited(
                remaining,
                f"Please wait {_human_wait(remaining)} before requesting another OTP, "
                "you can close this page for now.",
            )

    code = generate_code()
    record = OtpCode(
        email=email,
        matric=matric,
        otp=code,
        created_at=now,
        expires_at=now + policy.expiry,
    )
    try:
        db.session.add(record)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to store OTP for %s", email)
        raise StorageError("Failed to store OTP")

    try:
        sender(email, code)
    except Exception:
        logger.exception("Failed to send OTP email to %s", email)
        raise DeliveryError("Failed to send OTP email")

    logger.info("Issued OTP for matric %s", matric)
    return record


def _resolve_matric(record, email):
    if record.matric:
        return record.matric

    try:
        student = Student.query.filter_by(email=email).first()
    except SQLAlchemyError:
        logger.exception("Error retrieving student data for %s", email)
        raise StudentLookupFailed()
    if student is None:
        logger.error("No student found for verified email %s", email)
        raise StudentLookupFailed()
    return student.matric_number


def verify_otp(email, code, now=None):
    """Check a submitted code and return ``(matric, token)`` on success.

    A successful verification consumes the OTP row. If the delete fails the
    credential is still issued; the cooldown keeps new codes from being minted.
    """
    email = normalize_email(email)
    code = _text(code, "OTP")
    if not email or not code:
        raise InvalidInput("Email and OTP are required")

    now = now or utcnow()

    try:
        record = (
            OtpCode.query.filter_by(email=email, otp=code)
            .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
            .first()
        )
    except SQLAlchemyError:
        logger.exception("OTP lookup failed for %s", email)
        raise StorageError("Database error during verification")

    if record is None:
        raise InvalidCode()
    if now > record.expires_at:
        raise Expired()

    matric = _resolve_matric(record, email)
    record_id = record.id

    try:
        db.session.delete(record)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Error deleting OTP %s", record_id)

    logger.info("OTP verified for matric %s", matric)
    return matric, issue_voter_token(email, matric)
