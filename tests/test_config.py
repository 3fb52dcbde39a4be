from datetime import datetime, timedelta

import pytest

from app import create_app
from config import OtpPolicy, parse_voting_time, voting_is_open
from models import db

NOW = datetime(2025, 10, 1, 12, 0, 0)


def test_otp_policy_from_config():
    policy = OtpPolicy.from_config({
        "OTP_COOLDOWN_SECONDS": "300",
        "OTP_EXPIRY_SECONDS": 420,
        "ALLOWED_EMAIL_DOMAIN": "Student.Example.edu",
    })

    assert policy.cooldown == timedelta(minutes=5)
    assert policy.expiry == timedelta(minutes=7)
    assert policy.allowed_domain == "student.example.edu"


def test_stored_flag_overrides_config():
    assert voting_is_open({"VOTING_OPEN": False}, NOW, stored_flag=True)
    assert not voting_is_open({"VOTING_OPEN": True}, NOW, stored_flag=False)


def test_config_used_without_stored_flag():
    assert voting_is_open({"VOTING_OPEN": True}, NOW)
    assert not voting_is_open({"VOTING_OPEN": False}, NOW)


def test_voting_window():
    config = {
        "VOTING_OPEN": True,
        "VOTING_START": "2025-10-01T07:00:00",
        "VOTING_END": "2025-10-01T19:00:00",
    }

    assert voting_is_open(config, NOW)
    assert not voting_is_open(config, NOW.replace(hour=6))
    assert not voting_is_open(config, NOW.replace(hour=20))


def test_parse_voting_time_converts_offsets_to_naive_utc():
    assert parse_voting_time("2025-10-01T07:00:00Z") == datetime(2025, 10, 1, 7, 0, 0)
    assert parse_voting_time("2025-10-01T08:00:00+01:00") == datetime(2025, 10, 1, 7, 0, 0)
    assert parse_voting_time("2025-10-01T07:00:00") == datetime(2025, 10, 1, 7, 0, 0)
    assert parse_voting_time(None) is None
    assert parse_voting_time("") is None


def test_parse_voting_time_rejects_garbage():
    with pytest.raises(ValueError):
        parse_voting_time("tomorrow morning", "VOTING_START")


def test_offset_window_in_app_config():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "VOTING_OPEN": True,
        "VOTING_START": "2000-01-01T00:00:00Z",
        "VOTING_END": "2999-12-31T23:00:00+01:00",
    })

    assert app.config["VOTING_START"] == datetime(2000, 1, 1)
    assert app.config["VOTING_END"] == datetime(2999, 12, 31, 22, 0, 0)
    with app.app_context():
        db.create_all()
        response = app.test_client().get("/api/status")
        db.session.remove()
        db.drop_all()

    assert response.status_code == 200
    assert response.get_json() == {"votingOpen": True}


def test_malformed_window_fails_at_startup():
    with pytest.raises(ValueError):
        create_app({"SQLALCHEMY_DATABASE_URI": "sqlite://", "VOTING_END": "not a date"})
