"""tests/test_classifier.py

Unit tests for message classification and the pure detectors.
"""

from __future__ import annotations

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.classifier import (
    CATEGORY_RULES,
    Category,
    classify,
    detect_comparison_query,
    detect_hp_query,
    detect_topics,
)


class TestClassify:
    """Test suite for classify()."""

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("what's my old outboard worth", Category.TRADEIN_REDIRECT),
            ("What’s my old outboard worth?", Category.TRADEIN_REDIRECT),
            ("Can I trade in my old Yamaha?", Category.TRADEIN_REDIRECT),
            ("Do you offer financing?", Category.FINANCING),
            ("My motor won't start", Category.TROUBLESHOOTING),
            ("Do I need a boat license?", Category.LICENSING),
            ("When is ice-out on the lake?", Category.SEASONAL),
            ("Any rebates right now?", Category.PROMOTIONS),
            ("Where are you located?", Category.HARRIS),
            ("Tell me about the Verado", Category.MERCURY),
        ],
    )
    def test_rule_table(self, message: str, expected: Category) -> None:
        assert classify(message) is expected

    def test_rule_order_starts_with_redirects(self) -> None:
        """Trade-in and financing are checked before any knowledge category."""
        order = [rule.category for rule in CATEGORY_RULES]
        assert order[:2] == [Category.TRADEIN_REDIRECT, Category.FINANCING]
        assert order[-4:] == [Category.MERCURY, Category.HARRIS, Category.LOCAL, Category.BOATING]

    def test_pricing_question_is_none(self) -> None:
        assert classify("How much is the 9.9?") is Category.NONE

    def test_unmatched_question_is_general(self) -> None:
        assert classify("Is it good on fuel?") is Category.GENERAL

    def test_statement_without_match_is_none(self) -> None:
        assert classify("Thanks") is Category.NONE

    def test_product_context_widens_generic(self) -> None:
        assert classify("Is it good on fuel?", has_active_subject_context=True) is Category.MERCURY

    def test_product_context_never_narrows(self) -> None:
        assert classify("Do you offer financing?", has_active_subject_context=True) is Category.FINANCING

    def test_idempotent(self) -> None:
        message = "what's my old outboard worth"
        assert classify(message) is classify(message)


class TestDetectors:
    """Test suite for topic, comparison and HP detection."""

    def test_topics(self) -> None:
        topics = detect_topics("Is the 9.9 good for fishing?")
        assert "fishing" in topics
        assert "small_motor" in topics

    def test_topics_price_concern(self) -> None:
        assert "price_concern" in detect_topics("That's a bit expensive for my budget")

    def test_comparison_orders_smaller_first(self) -> None:
        comparison = detect_comparison_query("compare 60 vs 30")
        assert comparison.is_comparison
        assert (comparison.hp1, comparison.hp2) == (30.0, 60.0)

    def test_comparison_absent(self) -> None:
        assert not detect_comparison_query("what motors do you have").is_comparison

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("What 30hp motors do you have?", 30.0),
            ("How much is the 9.9?", 9.9),
            ("115", 115.0),
            ("I need 1000 hp", None),
            ("hello", None),
        ],
    )
    def test_hp_query(self, message: str, expected) -> None:
        assert detect_hp_query(message) == expected
