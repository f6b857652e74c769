"""Tests for name detection."""

import pytest

from hearth.memory import extract_name, is_name_fact, name_fact


class TestExtractName:
    """Tests for extract_name."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Hi, my name is Ava", "Ava"),
            ("my name's ava and I like plants", "Ava"),
            ("My name is Mary Jane.", "Mary Jane"),
            ("Call me Ishmael.", "Ishmael"),
            ("Hey, I'm Sam!", "Sam"),
            ("I am Noor, nice to meet you", "Noor"),
        ],
    )
    def test_introductions(self, message, expected):
        """Each introduction form yields the capitalized name."""
        assert extract_name(message) == expected

    @pytest.mark.parametrize(
        "message",
        [
            "I'm tired today",
            "I'm Not sure what to do",
            "I am so happy",
            "what's your name?",
            "",
        ],
    )
    def test_not_introductions(self, message):
        """States and questions are not names."""
        assert extract_name(message) is None

    @pytest.mark.parametrize("message", ["I'm Sam", "Ugh, I'm Starving right now"])
    def test_explicit_only_ignores_loose_form(self, message):
        """With explicit_only, "I'm X" is not read as a name."""
        assert extract_name(message, explicit_only=True) is None

    @pytest.mark.parametrize(
        "message,expected",
        [("My name is Sam", "Sam"), ("Actually, call me Bea", "Bea")],
    )
    def test_explicit_only_keeps_explicit_forms(self, message, expected):
        """Explicit forms still match with explicit_only."""
        assert extract_name(message, explicit_only=True) == expected


class TestNameFact:
    """Tests for the name fact helpers."""

    def test_name_fact(self):
        """The fact reads "Name is <name>"."""
        assert name_fact("Ava") == "Name is Ava"

    def test_is_name_fact(self):
        """Only name facts are recognised, regardless of case."""
        assert is_name_fact("Name is Ava")
        assert is_name_fact("name is ava")
        assert not is_name_fact("Likes tea")
        assert not is_name_fact("Her dog's name is Rex")
