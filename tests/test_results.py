from models import Ballot, Candidate, Post, Student, db
from results import tally_results


def cast(matric, votes_data):
    db.session.add(Student(matric_number=matric, name=matric, email=f"{matric}@student.example.edu".lower(),
                           has_voted=True))
    db.session.add(Ballot(student_matric=matric, votes_data={str(k): v for k, v in votes_data.items()}))
    db.session.commit()


def post_result(results, post_id):
    return next(p for p in results["posts"] if p["id"] == post_id)


def test_no_ballots_reports_no_data(election):
    results = tally_results()

    assert results["ballotsCast"] == 0
    for post in results["posts"]:
        assert post["hasData"] is False
        assert post["totalVotes"] == 0
        assert all(c["percentage"] == 0 for c in post["candidates"])


def test_post_without_candidates(election):
    empty = Post(name="Treasurer")
    db.session.add(empty)
    db.session.commit()

    result = post_result(tally_results(), empty.id)
    assert result["candidates"] == []
    assert result["hasData"] is False


def test_one_post_with_zero_ballots(election):
    db.session.add(Ballot(student_matric=election.jane, votes_data={str(election.president): election.ada}))
    db.session.commit()

    results = tally_results()
    assert post_result(results, election.president)["hasData"] is True
    secretary = post_result(results, election.secretary)
    assert secretary["hasData"] is False
    assert [c["percentage"] for c in secretary["candidates"]] == [0.0, 0.0]


def test_sorted_by_votes_with_ties_in_input_order(election):
    extra = Candidate(post_id=election.president, name="Chioma Nwosu")
    db.session.add(extra)
    db.session.commit()

    cast("X1", {election.president: extra.id, election.secretary: election.chidi})
    cast("X2", {election.president: extra.id, election.secretary: election.chidi})
    cast("X3", {election.president: election.bayo, election.secretary: election.dami})

    results = tally_results()
    president = post_result(results, election.president)
    assert [c["id"] for c in president["candidates"]] == [extra.id, election.bayo, election.ada]
    assert [c["votes"] for c in president["candidates"]] == [2, 1, 0]
    assert [c["percentage"] for c in president["candidates"]] == [66.67, 33.33, 0.0]
    assert president["totalVotes"] == 3
    assert results["ballotsCast"] == 3


def test_tie_keeps_candidate_order(election):
    cast("X1", {election.president: election.bayo, election.secretary: election.dami})
    cast("X2", {election.president: election.ada, election.secretary: election.chidi})

    president = post_result(tally_results(), election.president)
    assert [c["id"] for c in president["candidates"]] == [election.ada, election.bayo]
    assert [c["percentage"] for c in president["candidates"]] == [50.0, 50.0]


def test_counts_come_from_ballots_not_running_totals(election):
    db.session.get(Candidate, election.ada).votes = 99
    db.session.commit()

    president = post_result(tally_results(), election.president)
    assert all(c["votes"] == 0 for c in president["candidates"])


def test_reports_turnout(election):
    cast("X1", {election.president: election.ada, election.secretary: election.dami})

    results = tally_results()
    assert results["ballotsCast"] == 1
    assert results["eligibleVoters"] == 4
