from collections import Counter

from models import Ballot, Post, Student, db


def count_ballots():
    """Count ``(post_id, candidate_id)`` pairs across every stored ballot."""
    counts = Counter()
    for (votes_data,) in db.session.query(Ballot.votes_data).all():
        for post_id, candidate_id in (votes_data or {}).items():
            counts[(int(post_id), int(candidate_id))] += 1
    return counts


def _percentage(count, total):
    if not total:
        return 0.0
    return round(count * 100.0 / total, 2)


def tally_results():
    """Per-post results computed from the ballots table. Read-only."""
    counts = count_ballots()
    posts = []
    for post in Post.query.order_by(Post.id).all():
        candidates = [
            {"id": candidate.id, "name": candidate.name, "votes": counts.get((post.id, candidate.id), 0)}
            for candidate in post.candidates
        ]
        # sorted() is stable, so ties keep candidate id order.
        candidates = sorted(candidates, key=lambda c: c["votes"], reverse=True)
        total = sum(c["votes"] for c in candidates)
        for candidate in candidates:
            candidate["percentage"] = _percentage(candidate["votes"], total)

        posts.append({
            "id": post.id,
            "name": post.name,
            "title": post.title,
            "candidates": candidates,
            "totalVotes": total,
            "hasData": bool(candidates) and total > 0,
        })

    return {
        "posts": posts,
        "ballotsCast": Ballot.query.count(),
        "eligibleVoters": Student.query.count(),
    }
