"""
Unit tests for topic annotation parsing.

Test Coverage:
    - Nested grammar: levels, merging of repeated names, depth limit
    - Quote stripping and blank entries
    - Flat comma grammar for JSON topics
    - JSON topic coercion from strings, names and objects
"""

from sensemaker.ingest.topics import coerce_topics, parse_flat_topics, parse_topics
from sensemaker.schemas.comments import Topic


def names(topics):
    return [t.name for t in topics]


class TestParseTopics:
    def test_empty_input(self):
        assert parse_topics("") == []
        assert parse_topics("   ") == []
        assert parse_topics(None) == []

    def test_nested_levels(self):
        topics = parse_topics("Education:Math;Science:Physics:Optics")

        assert names(topics) == ["Education", "Science"]
        assert names(topics[0].subtopics) == ["Math"]
        physics = topics[1].subtopics[0]
        assert physics.name == "Physics"
        assert names(physics.subtopics) == ["Optics"]

    def test_repeated_topics_merge_in_first_seen_order(self):
        topics = parse_topics("A:x;B;A:y;A:x:deep;A:x:deep")

        assert names(topics) == ["A", "B"]
        assert names(topics[0].subtopics) == ["x", "y"]
        assert names(topics[0].subtopics[0].subtopics) == ["deep"]
        assert topics[1].subtopics is None

    def test_levels_past_third_ignored(self):
        topics = parse_topics("A:B:C:D:E")

        assert topics[0].subtopics[0].subtopics == [Topic(name="C")]

    def test_quotes_and_blank_entries(self):
        topics = parse_topics('"Health";;\'Housing\':Rent')

        assert names(topics) == ["Health", "Housing"]
        assert names(topics[1].subtopics) == ["Rent"]

    def test_comma_list_is_single_entry(self):
        assert names(parse_topics("Education, Technology")) == ["Education, Technology"]


class TestParseFlatTopics:
    def test_comma_list(self):
        assert names(parse_flat_topics("Education, Technology ,Health")) == [
            "Education",
            "Technology",
            "Health",
        ]

    def test_empty_items_dropped(self):
        assert names(parse_flat_topics("A,, ,B")) == ["A", "B"]


class TestCoerceTopics:
    def test_string_uses_flat_grammar(self):
        assert names(coerce_topics("Roads, Parks")) == ["Roads", "Parks"]

    def test_list_of_names_and_objects(self):
        topics = coerce_topics(["Roads", {"name": "Parks", "subtopics": [{"name": "Dogs"}]}, ""])

        assert names(topics) == ["Roads", "Parks"]
        assert names(topics[1].subtopics) == ["Dogs"]

    def test_malformed_subtopics_keep_name(self):
        topics = coerce_topics([{"name": "Parks", "subtopics": "not-a-list"}])

        assert topics == [Topic(name="Parks")]

    def test_unusable_values(self):
        assert coerce_topics(None) is None
        assert coerce_topics(42) is None
        assert coerce_topics([]) is None
