from types import SimpleNamespace

import pytest

from admin import create_admin
from app import create_app
from config import OtpPolicy
from models import Candidate, Post, Student, db

SCHOOL_DOMAIN = "student.example.edu"


class RecordingSender:
    """Stands in for SMTP; remembers what would have been sent."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def __call__(self, to_email, otp):
        if self.fail:
            raise OSError("SMTP server unavailable")
        self.sent.append((to_email, otp))

    @property
    def last_code(self):
        return self.sent[-1][1]


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def app(sender):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SESSION_COOKIE_SECURE": False,
            "ALLOWED_EMAIL_DOMAIN": SCHOOL_DOMAIN,
            "OTP_COOLDOWN_SECONDS": 3600,
            "OTP_EXPIRY_SECONDS": 600,
            "SESSION_MAX_AGE_SECONDS": 3600,
            "VOTING_OPEN": True,
            "VOTING_START": None,
            "VOTING_END": None,
        },
        otp_sender=sender,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def policy(app):
    return OtpPolicy.from_config(app.config)


@pytest.fixture
def election(app):
    president = Post(name="President", title="Student Union President")
    secretary = Post(name="Secretary", title="General Secretary")
    db.session.add_all([president, secretary])
    db.session.flush()

    ada = Candidate(post_id=president.id, name="Ada Obi")
    bayo = Candidate(post_id=president.id, name="Bayo Ade")
    chidi = Candidate(post_id=secretary.id, name="Chidi Eze")
    dami = Candidate(post_id=secretary.id, name="Dami Ola")
    jane = Student(matric_number="BU19/0001", name="Jane Doe", email=f"jane@{SCHOOL_DOMAIN}")
    john = Student(matric_number="BU19/0002", name="John Roe", email=f"john@{SCHOOL_DOMAIN}")
    voted = Student(
        matric_number="BU19/0003", name="Vera Voted", email=f"vera@{SCHOOL_DOMAIN}", has_voted=True
    )
    db.session.add_all([ada, bayo, chidi, dami, jane, john, voted])
    db.session.commit()

    return SimpleNamespace(
        president=president.id,
        secretary=secretary.id,
        ada=ada.id,
        bayo=bayo.id,
        chidi=chidi.id,
        dami=dami.id,
        jane=jane.matric_number,
        jane_email=jane.email,
        john=john.matric_number,
        john_email=john.email,
        voted=voted.matric_number,
        voted_email=voted.email,
    )


@pytest.fixture
def admin_user(app):
    create_admin("admin@example.com", "correct horse")
    return SimpleNamespace(email="admin@example.com", password="correct horse")
