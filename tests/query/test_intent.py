"""
Unit tests for codegraph_kb.query.intent
"""

import pytest

from codegraph_kb.query.intent import Action, detect_action


class TestDetectAction:
    @pytest.mark.parametrize("text,expected", [
        ("add a field to User", Action.ADD_FIELD),
        ("Add phone columns to the customer table", Action.ADD_FIELD),
        ("remove the email column", Action.REMOVE_FIELD),
        ("drop property legacyId from Order", Action.REMOVE_FIELD),
        ("create an endpoint for orders", Action.CREATE_API),
        ("build a form for signup", Action.CREATE_UI),
        ("validate emails on signup", Action.ADD_VALIDATION),
        ("refactor the auth module", Action.REFACTOR),
        ("the order lookup is slow", Action.OPTIMIZE),
        ("where is the User entity", Action.UNKNOWN),
    ])
    def test_keyword_rules(self, text, expected):
        assert detect_action(text) == expected

    def test_rules_are_ordered(self):
        # a field addition that also mentions validation is still a field addition
        assert detect_action("add validation to the email field") == Action.ADD_FIELD

    def test_add_without_field_word(self):
        assert detect_action("add caching") == Action.UNKNOWN

    @pytest.mark.parametrize("text", [None, "", "   ", 42])
    def test_non_text_is_unknown(self, text):
        assert detect_action(text) == Action.UNKNOWN

    def test_action_values(self):
        assert Action.ADD_FIELD.value == "add_field"
        assert Action("unknown") is Action.UNKNOWN
