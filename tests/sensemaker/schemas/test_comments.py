"""
Unit tests for the canonical comment model.

Test Coverage:
    - Numeric ids coerced to strings
    - Vote info normalized on construction
    - Wire form uses camelCase and metadata-only tallies
    - Wire form reads back to an equal comment
"""

from sensemaker.schemas.comments import Comment, GroupedVotes, SimpleVotes, Topic, VoteTally


class TestComment:
    def test_numeric_id_coerced(self):
        assert Comment(id=12, text="x").id == "12"

    def test_vote_info_normalized(self):
        comment = Comment(id="1", text="x", voteInfo={"agrees": "2", "disagrees": 1})

        assert comment.vote_info == SimpleVotes(tally=VoteTally(agree_count=2, disagree_count=1))

    def test_wire_form(self):
        comment = Comment(
            id="1",
            text="x",
            vote_info=GroupedVotes(groups={"g0": VoteTally(agree_count=1)}),
            topics=[Topic(name="Roads")],
        )

        assert comment.to_wire() == {
            "id": "1",
            "text": "x",
            "voteInfo": {"g0": {"agreeCount": 1, "disagreeCount": 0, "passCount": 0}},
            "topics": [{"name": "Roads"}],
        }

    def test_wire_form_reads_back(self):
        comment = Comment(
            id="1",
            text="x",
            vote_info=SimpleVotes(tally=VoteTally(agree_count=3, pass_count=1)),
            topics=[Topic(name="Roads", subtopics=[Topic(name="Potholes")])],
        )

        assert Comment.model_validate(comment.to_wire()) == comment

    def test_without_votes(self):
        assert Comment(id="1", text="x").to_wire() == {"id": "1", "text": "x"}
