import enum
import logging
from functools import wraps

from flask import session
from werkzeug.security import check_password_hash, generate_password_hash

from errors import InvalidInput, Unauthorized
from models import AdminUser, User, db

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"


class AdminState(enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


def is_admin(user_id):
    return AdminUser.query.filter_by(user_id=user_id).first() is not None


def resolve_admin_state():
    """Work out who the caller is from the signed Flask session.

    Membership is looked up again on every call, so removing a row from
    ``admin_users`` takes effect on the user's next request.
    """
    user_id = session.get(SESSION_USER_KEY)
    if user_id is None:
        return AdminState.ANONYMOUS
    if db.session.get(User, user_id) is None:
        session.pop(SESSION_USER_KEY, None)
        return AdminState.ANONYMOUS
    if not is_admin(user_id):
        return AdminState.AUTHENTICATED
    return AdminState.ADMIN


def sign_in(email, password):
    if not isinstance(email, str) or not isinstance(password, str):
        raise InvalidInput("Email and password are required")
    email = email.strip().lower()
    if not email or not password:
        raise InvalidInput("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if user is None or not check_password_hash(user.password_hash, password):
        raise Unauthorized("Invalid email or password")

    session.clear()
    if not is_admin(user.id):
        logger.warning("Non-admin user %s attempted admin sign-in", email)
        raise Unauthorized("You don't have admin privileges", status_code=403)

    session[SESSION_USER_KEY] = user.id
    logger.info("Admin %s signed in", email)
    return user


def sign_out():
    session.pop(SESSION_USER_KEY, None)


def create_admin(email, password):
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(email=email, password_hash=generate_password_hash(password))
        db.session.add(user)
    else:
        user.password_hash = generate_password_hash(password)
    db.session.flush()
    if not is_admin(user.id):
        db.session.add(AdminUser(user_id=user.id))
    db.session.commit()
    return user


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        state = resolve_admin_state()
        if state is AdminState.ANONYMOUS:
            raise Unauthorized("You must be logged in to view this page.")
        if state is AdminState.AUTHENTICATED:
            # Demoted or never an admin: drop the session like a sign-out.
            sign_out()
            raise Unauthorized("You don't have admin privileges", status_code=403)
        return f(*args, **kwargs)
    return decorated_function
