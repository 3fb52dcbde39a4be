import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import AlreadyVoted, IncompleteSelection, NotFound, StorageError
from models import Ballot, Candidate, Post, Student, db, utcnow
from results import count_ballots

logger = logging.getLogger(__name__)


def _validate_selections(selections):
    """Return ``{post_id: candidate_id}`` if ``selections`` covers every post exactly once."""
    posts = {post.id: post for post in Post.query.order_by(Post.id).all()}
    if not posts:
        raise IncompleteSelection("There are no posts to vote for")

    candidate_posts = dict(
        db.session.query(Candidate.id, Candidate.post_id).all()
    )

    choices = {}
    for post_id, candidate_id in selections:
        if post_id not in posts:
            raise IncompleteSelection(f"Unknown post {post_id}")
        if post_id in choices:
            raise IncompleteSelection(f"Only one candidate may be chosen for {posts[post_id].name}")
        if candidate_posts.get(candidate_id) != post_id:
            raise IncompleteSelection(f"Invalid candidate for {posts[post_id].name}")
        choices[post_id] = candidate_id

    missing = [post.name for post_id, post in posts.items() if post_id not in choices]
    if missing:
        raise IncompleteSelection("Please select a candidate for: " + ", ".join(missing))
    return choices


def submit_ballot(matric, selections, now=None):
    """Record one complete ballot for ``matric`` and mark the student as voted.

    The ballot insert, the count increments and the conditional
    ``has_voted`` flip share one transaction. A concurrent second submission
    fails either on the unique ballot key or on the conditional update, and
    is reported as AlreadyVoted.
    """
    try:
        choices = _validate_selections(selections)
    except SQLAlchemyError:
        logger.exception("Error loading posts for ballot validation")
        raise StorageError("Could not load the ballot")

    try:
        student = Student.query.filter_by(matric_number=matric).first()
        if student is None:
            raise NotFound("Student not found")
        if student.has_voted:
            raise AlreadyVoted()

        if Ballot.query.filter_by(student_matric=matric).first() is not None:
            logger.warning("Ballot exists for %s without the voted flag; repairing", matric)
            student.has_voted = True
            db.session.commit()
            raise AlreadyVoted()

        db.session.add(Ballot(
            student_matric=matric,
            votes_data={str(post_id): candidate_id for post_id, candidate_id in choices.items()},
            created_at=now or utcnow(),
        ))
        db.session.flush()

        for candidate_id in choices.values():
            Candidate.query.filter_by(id=candidate_id).update(
                {Candidate.votes: Candidate.votes + 1}, synchronize_session=False
            )

        flipped = Student.query.filter_by(matric_number=matric, has_voted=False).update(
            {Student.has_voted: True}, synchronize_session=False
        )
        if flipped != 1:
            db.session.rollback()
            raise AlreadyVoted()

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Concurrent ballot submission rejected for %s", matric)
        raise AlreadyVoted()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to record ballot for %s", matric)
        raise StorageError(
            "Failed to record your vote. Please check your voting status before trying again."
        )

    logger.info("Ballot recorded for %s (%d posts)", matric, len(choices))
    return choices


def repair_voter_flags():
    """Set ``has_voted`` for students who have a ballot but a false flag."""
    matrics = [
        row.student_matric
        for row in db.session.query(Ballot.student_matric)
        .join(Student, Student.matric_number == Ballot.student_matric)
        .filter(Student.has_voted.is_(False))
        .all()
    ]
    if matrics:
        Student.query.filter(Student.matric_number.in_(matrics)).update(
            {Student.has_voted: True}, synchronize_session=False
        )
        db.session.commit()
        logger.warning("Repaired voted flag for %d students", len(matrics))
    return matrics


def reconcile_candidate_counts():
    """Rewrite each candidate's running count from the ballots table."""
    counts = count_ballots()
    changed = 0
    for candidate in Candidate.query.order_by(Candidate.id).all():
        expected = counts.get((candidate.post_id, candidate.id), 0)
        if candidate.votes != expected:
            logger.warning(
                "Candidate %s count drifted: stored %s, ballots %s",
                candidate.id, candidate.votes, expected,
            )
            candidate.votes = expected
            changed += 1
    if changed:
        db.session.commit()
    return changed
