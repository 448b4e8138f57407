"""
Tests for analysis engine factory loading.

Test Coverage:
    - module:callable references resolve, including nested attributes
    - Empty, malformed and unresolvable references raise ValueError
"""

import pytest

from sensemaker.engine.loader import load_engine_factory
from sensemaker.engine.protocol import is_topic_summary


class TestLoadEngineFactory:
    def test_resolves_callable(self):
        factory = load_engine_factory("json:loads")

        assert factory('{"a": 1}') == {"a": 1}

    def test_resolves_nested_attribute(self):
        factory = load_engine_factory("json:JSONDecoder.decode")

        assert callable(factory)

    @pytest.mark.parametrize("spec", ["", "json", "json.loads"])
    def test_malformed_reference(self, spec):
        with pytest.raises(ValueError, match="module:callable"):
            load_engine_factory(spec)

    def test_unknown_module(self):
        with pytest.raises(ValueError, match="Cannot import"):
            load_engine_factory("no_such_engine_module:build")

    def test_unknown_attribute(self):
        with pytest.raises(ValueError, match="does not name"):
            load_engine_factory("json:build_engine")

    def test_not_callable(self):
        with pytest.raises(ValueError, match="not callable"):
            load_engine_factory("json:__name__")


class TestIsTopicSummary:
    def test_dict_and_object_blocks(self):
        class Block:
            type = "TopicSummary"

        assert is_topic_summary({"type": "TopicSummary"})
        assert is_topic_summary(Block())
        assert not is_topic_summary({"type": "Overview"})
