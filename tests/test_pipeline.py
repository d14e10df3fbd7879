"""tests/test_pipeline.py

Tests for turn preparation (classification, product blocks, augmentation
gating) and the step runner behind it.
"""

from __future__ import annotations

# Standard Library
from types import SimpleNamespace
from unittest.mock import Mock

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.adk_runtime import AdkAgent, AdkStep
from motorchat.augmenter import ContextAugmenter
from motorchat.classifier import Category
from motorchat.models import SubjectProduct, TurnContext


@pytest.fixture
def spy_augmenter() -> Mock:
    augmenter = Mock(spec=ContextAugmenter)
    augmenter.augment.return_value = "## LOCAL INFO\nRice Lake walleye opens in May."
    return augmenter


class TestChatPipeline:
    """Test suite for ChatPipeline.prepare() and reply()."""

    def test_trade_in_never_augments(self, make_pipeline, spy_augmenter) -> None:
        pipeline = make_pipeline(augmenter=spy_augmenter)
        plan = pipeline.prepare("what's my old outboard worth", [], TurnContext())

        assert plan.category is Category.TRADEIN_REDIRECT
        assert "augment" not in plan.steps
        spy_augmenter.augment.assert_not_called()
        assert plan.payload is not None

    def test_financing_never_augments(self, make_pipeline, spy_augmenter) -> None:
        pipeline = make_pipeline(augmenter=spy_augmenter)
        plan = pipeline.prepare("Do you offer financing?", [], TurnContext())
        assert plan.category is Category.FINANCING
        spy_augmenter.augment.assert_not_called()

    def test_knowledge_question_is_augmented(self, make_pipeline, spy_augmenter) -> None:
        pipeline = make_pipeline(augmenter=spy_augmenter)
        plan = pipeline.prepare("Best walleye spots on Rice Lake?", [], TurnContext())

        assert plan.category is Category.LOCAL
        spy_augmenter.augment.assert_called_once_with("Best walleye spots on Rice Lake?", Category.LOCAL, None)
        assert plan.payload.system_instruction.endswith("Rice Lake walleye opens in May.")

    def test_augmenter_error_does_not_fail_turn(self, make_pipeline, spy_augmenter) -> None:
        spy_augmenter.augment.side_effect = TypeError("bad search body")
        plan = make_pipeline(augmenter=spy_augmenter).prepare("Best walleye spots on Rice Lake?", [], TurnContext())

        assert plan.augmentation is None
        assert plan.payload is not None
        assert "Rice Lake walleye opens in May." not in plan.payload.system_instruction

    def test_comparison_block(self, make_pipeline) -> None:
        plan = make_pipeline().prepare("compare 30 vs 60", [], TurnContext())
        assert plan.comparison.is_comparison
        assert plan.hp is None
        assert "Price difference: $4,756" in plan.payload.system_instruction

    def test_hp_listing_block(self, make_pipeline) -> None:
        plan = make_pipeline().prepare("What 30hp motors do you have?", [], TurnContext())
        assert plan.hp == 30
        assert "## 30HP MOTORS - WE HAVE 2:" in plan.payload.system_instruction

    def test_catalogue_link(self, make_pipeline) -> None:
        plan = make_pipeline().prepare("Do you sell propellers?", [], TurnContext())
        assert plan.category is Category.ACCESSORIES
        assert "## CATALOGUE LINK\nPropellers & Trim Tabs:" in plan.payload.system_instruction

    def test_subject_details_filled_from_inventory(self, make_pipeline) -> None:
        context = TurnContext(subject=SubjectProduct(id="m-60-elpt", model="60 ELPT FourStroke"))
        plan = make_pipeline().prepare("Is it good on fuel?", [], context)

        assert plan.category is Category.MERCURY
        assert plan.context.subject.price == 12161
        assert plan.context.subject.hp == 60
        assert context.subject.price is None
        assert "subject_details" in plan.steps

    def test_no_subject_skips_details(self, make_pipeline) -> None:
        plan = make_pipeline().prepare("Thanks", [], TurnContext())
        assert "subject_details" not in plan.steps
        assert plan.steps[-1] == "assemble"

    def test_reply_uses_completion(self, make_pipeline, fake_source) -> None:
        pipeline = make_pipeline(fake_source(["We have two 30HP motors."]))
        plan = pipeline.prepare("What 30hp motors do you have?", [], TurnContext())
        reply = pipeline.reply(plan)
        assert reply.reply == "We have two 30HP motors."
        assert reply.category == "harris"
        assert not reply.is_comparison

    def test_reply_falls_back_on_error(self, make_pipeline, fake_source, knowledge) -> None:
        pipeline = make_pipeline(fake_source(error=RuntimeError("quota")))
        plan = pipeline.prepare("Thanks", [], TurnContext())
        assert pipeline.reply(plan).reply == knowledge.fallback_message()


class TestAdkAgent:
    """Test suite for the step runner."""

    def test_skip_halt_and_always_run(self) -> None:
        calls = []
        context = SimpleNamespace(halted=False, skip=True)

        def _halt(ctx) -> None:
            calls.append("halt")
            ctx.halted = True

        agent = AdkAgent(
            [
                AdkStep("skipped", lambda ctx: calls.append("skipped"), skip_if=lambda ctx: ctx.skip),
                AdkStep("halt", _halt),
                AdkStep("after_halt", lambda ctx: calls.append("after_halt")),
                AdkStep("finally", lambda ctx: calls.append("finally"), always_run=True),
            ]
        )
        assert agent.run(context) == ["halt", "finally"]
        assert calls == ["halt", "finally"]
        assert agent.step_names == ["skipped", "halt", "after_halt", "finally"]

    def test_duplicate_names_rejected(self) -> None:
        with pytest.raises(ValueError):
            AdkAgent([AdkStep("a", lambda ctx: None), AdkStep("a", lambda ctx: None)])
