import json
import logging

import click
from flask import Blueprint, Flask, current_app, jsonify, request
from flask.cli import with_appcontext
from werkzeug.exceptions import HTTPException, InternalServerError

# --- Database and App Setup ---
from models import Post, Setting, Student, db, utcnow  # Import from models.py

import admin
from ballots import reconcile_candidate_counts, repair_voter_flags, submit_ballot
from config import OtpPolicy, default_config, parse_voting_time, voting_is_open
from errors import AlreadyVoted, InvalidInput, NotFound, RateLimited, VotingError
from mailer import SmtpOtpSender
from otp import issue_otp, normalize_matric, verify_otp
from results import tally_results
from tokens import VOTER_COOKIE_NAME, load_voter_token

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")
admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

VOTING_OPEN_KEY = "voting_open"


# --- Helper Functions ---
def current_voting_open():
    setting = db.session.get(Setting, VOTING_OPEN_KEY)
    stored = setting.value if setting is not None else None
    return voting_is_open(current_app.config, utcnow(), stored)


def set_voting_open(is_open):
    setting = db.session.get(Setting, VOTING_OPEN_KEY)
    if setting is None:
        setting = Setting(key=VOTING_OPEN_KEY)
        db.session.add(setting)
    setting.value = bool(is_open)
    db.session.commit()
    logger.info("Voting set to %s", "open" if is_open else "closed")


def request_json():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Expected a JSON object")
    return data


def current_voter():
    return load_voter_token(request.cookies.get(VOTER_COOKIE_NAME))


def parse_selections(votes):
    if not isinstance(votes, list) or not votes:
        raise InvalidInput("Invalid vote data")
    selections = []
    for vote in votes:
        if not isinstance(vote, dict):
            raise InvalidInput("Invalid vote data")
        try:
            selections.append((int(vote["post_id"]), int(vote["candidate_id"])))
        except (KeyError, TypeError, ValueError):
            raise InvalidInput("Invalid vote data")
    return selections


def serialize_post(post):
    return {
        "id": post.id,
        "name": post.name,
        "title": post.title,
        "candidates": [{"id": c.id, "name": c.name} for c in post.candidates],
    }


# --- Voting gate ---
@api.before_request
def require_voting_open():
    if request.endpoint == "api.status":
        return None
    if not current_voting_open():
        return jsonify({"error": "Voting is closed"}), 403
    return None


# --- Public Routes ---
@api.route("/status", methods=["GET"])
def status():
    return jsonify({"votingOpen": current_voting_open()})


@api.route("/students/check", methods=["POST"])
def check_student():
    matric = normalize_matric(request_json().get("matric"))
    if not matric:
        raise InvalidInput("Matric number is required")
    student = Student.query.filter_by(matric_number=matric).first()
    if student is None:
        raise NotFound("This matric number can't be found")
    return jsonify({"name": student.name, "hasVoted": student.has_voted})


@api.route("/send-otp", methods=["POST"])
def send_otp():
    data = request_json()
    issue_otp(
        data.get("email"),
        data.get("matric"),
        OtpPolicy.from_config(current_app.config),
        current_app.extensions["otp_sender"],
    )
    return jsonify({"message": "OTP sent successfully"})


@api.route("/verify-otp", methods=["POST"])
def verify():
    data = request_json()
    _, token = verify_otp(data.get("email"), data.get("otp"))

    response = jsonify({"message": "OTP verified successfully", "success": True})
    response.set_cookie(
        VOTER_COOKIE_NAME,
        token,
        max_age=int(current_app.config["SESSION_MAX_AGE_SECONDS"]),
        httponly=True,
        secure=current_app.config["SESSION_COOKIE_SECURE"],
        samesite="Lax",
        path="/",
    )
    return response


@api.route("/ballot", methods=["GET"])
def ballot():
    voter = current_voter()
    student = Student.query.filter_by(matric_number=voter["matric"]).first()
    if student is None:
        raise NotFound()
    if student.has_voted:
        raise AlreadyVoted()

    posts = Post.query.order_by(Post.id).all()
    return jsonify({
        "email": voter["email"],
        "matric": voter["matric"],
        "posts": [serialize_post(post) for post in posts],
    })


@api.route("/submit-votes", methods=["POST"])
def submit_votes():
    voter = current_voter()
    data = request_json()
    selections = parse_selections(data.get("votes"))

    claimed = data.get("matric")
    if claimed and (not isinstance(claimed, str) or normalize_matric(claimed) != voter["matric"]):
        logger.warning("Ignoring body matric %r for session matric %s", claimed, voter["matric"])

    submit_ballot(voter["matric"], selections)

    response = jsonify({
        "success": True,
        "message": "Votes submitted successfully",
        "logoutRequired": True,
    })
    response.delete_cookie(VOTER_COOKIE_NAME, path="/")
    return response


# --- Admin Routes ---
@admin_bp.route("/login", methods=["POST"])
def admin_login():
    data = request_json()
    admin.sign_in(data.get("email"), data.get("password"))
    return jsonify({"success": True})


@admin_bp.route("/logout", methods=["POST"])
def admin_logout():
    admin.sign_out()
    return jsonify({"success": True})


@admin_bp.route("/results", methods=["GET"])
@admin.admin_required
def admin_results():
    return jsonify(tally_results())


@admin_bp.route("/voting", methods=["POST"])
@admin.admin_required
def admin_voting():
    is_open = request_json().get("open")
    if not isinstance(is_open, bool):
        raise InvalidInput("'open' must be true or false")
    set_voting_open(is_open)
    return jsonify({"votingOpen": current_voting_open()})


# --- Error handlers ---
def handle_voting_error(error):
    response = jsonify(error.to_dict())
    response.status_code = error.status_code
    if isinstance(error, RateLimited):
        response.headers["Retry-After"] = str(error.retry_after)
    return response


def handle_http_error(error):
    response = error.get_response()
    response.data = json.dumps({"error": error.description})
    response.content_type = "application/json"
    return response


def handle_server_error(error):
    logger.error("Unhandled error: %s", getattr(error, "original_exception", error))
    return jsonify({"error": "Server error"}), 500


# --- CLI ---
@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create database tables."""
    db.create_all()
    click.echo("Initialized the database.")


@click.command("create-admin")
@click.argument("email")
@click.argument("password")
@with_appcontext
def create_admin_command(email, password):
    """Create an admin account, or reset its password."""
    admin.create_admin(email, password)
    click.echo(f"Admin {email} ready.")


@click.command("set-voting")
@click.argument("state", type=click.Choice(["open", "closed"]))
@with_appcontext
def set_voting_command(state):
    set_voting_open(state == "open")
    click.echo(f"Voting is now {state}.")


@click.command("repair-votes")
@with_appcontext
def repair_votes_command():
    """Fix voted flags and candidate counts from the ballots table."""
    repaired = repair_voter_flags()
    changed = reconcile_candidate_counts()
    click.echo(f"Repaired {len(repaired)} voter flags, {changed} candidate counts.")


def create_app(config=None, otp_sender=None):
    app = Flask(__name__)

    # --- Configuration ---
    app.config.update(default_config())
    if config:
        app.config.update(config)
    for key in ("VOTING_START", "VOTING_END"):
        app.config[key] = parse_voting_time(app.config.get(key), key)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize database
    db.init_app(app)

    app.extensions["otp_sender"] = otp_sender or SmtpOtpSender.from_config(app.config)

    app.register_blueprint(api)
    app.register_blueprint(admin_bp)
    app.register_error_handler(VotingError, handle_voting_error)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(InternalServerError, handle_server_error)

    for command in (init_db_command, create_admin_command, set_voting_command, repair_votes_command):
        app.cli.add_command(command)

    return app


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()  # Create database tables from models.py
    app.run(host="0.0.0.0", port=5000)
