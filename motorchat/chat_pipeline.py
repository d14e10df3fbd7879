"""Turn preparation: classification, optional augmentation, prompt assembly.

Role:
    Turns one user message plus its frozen context snapshot into a TurnPlan that
    carries the InstructionPayload. The plan is then either streamed through a
    StreamingCompletionProxy or completed in one blocking call.

Step contracts:
    classify:
        Sets category, topics, comparison and hp from the message.
    subject_details:
        Fills missing price/family on the subject snapshot from inventory. The
        enriched copy replaces the snapshot before any request is issued.
    product_blocks:
        Adds comparison, HP listing and catalogue blocks (precomputed text).
    augment:
        Calls the external lookup for eligible categories only.
    assemble:
        Builds the payload; the season comes from the injected clock.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Sequence

from .adk_runtime import AdkAgent, AdkStep
from .augmenter import ContextAugmenter, should_augment
from .classifier import Category, Comparison, classify, detect_comparison_query, detect_hp_query, detect_topics
from .gemini_client import GeminiClient
from .inventory import InventoryLoader, build_comparison_block, build_hp_listing
from .knowledge_loader import KnowledgeDocument
from .models import ChatReply, HistoryEntry, TurnContext
from .prompt_assembler import InstructionPayload, InventorySnapshot, StaticRules, assemble
from .streaming_proxy import StreamingCompletionProxy

logger = logging.getLogger("motorchat.pipeline")


@dataclass
class TurnPlan:
    """Mutable context passed through each preparation step."""
    session_id: str
    message: str
    history: List[HistoryEntry]
    context: TurnContext
    today: date
    category: Category = Category.NONE
    topics: List[str] = field(default_factory=list)
    comparison: Comparison = field(default_factory=lambda: Comparison(False))
    hp: Optional[float] = None
    extra_blocks: List[str] = field(default_factory=list)
    augmentation: Optional[str] = None
    payload: Optional[InstructionPayload] = None
    steps: List[str] = field(default_factory=list)
    halted: bool = False

    @property
    def has_subject(self) -> bool:
        return bool(self.context.subject and self.context.subject.model)


class ChatPipeline:
    def __init__(
        self,
        gemini: Optional[GeminiClient],
        knowledge: KnowledgeDocument,
        inventory: InventoryLoader,
        augmenter: ContextAugmenter,
        persona_template: str,
        history_turns: int = 4,
        financing_min_price: float = 5000,
        clock: Callable[[], date] = date.today,
    ) -> None:
        """Purpose: Wire the turn preparation steps and their collaborators.
        Inputs/Outputs: Inputs are the completion client, knowledge document,
            inventory, augmenter, persona template, limits and a clock; no return.
        Side Effects / State: Constructs an AdkAgent with ordered steps.
        Dependencies: AdkAgent/AdkStep and the step methods below.
        Failure Modes: None at init; step errors propagate from prepare().
        If Removed: No turn can be prepared or completed.
        Testing Notes: Pass a fake client and a fixed clock; inspect plan.payload.
        """
        # Store dependencies and build the step runner.
        self._gemini = gemini
        self._knowledge = knowledge
        self._inventory = inventory
        self._augmenter = augmenter
        self._rules = StaticRules(template=persona_template, knowledge=knowledge)
        self._history_turns = history_turns
        self._financing_min_price = financing_min_price
        self._clock = clock
        self._agent: AdkAgent[TurnPlan] = AdkAgent(
            steps=[
                AdkStep("classify", self._step_classify),
                AdkStep("subject_details", self._step_subject_details, skip_if=lambda plan: not plan.has_subject),
                AdkStep("product_blocks", self._step_product_blocks),
                AdkStep("augment", self._step_augment, skip_if=lambda plan: not should_augment(plan.category)),
                AdkStep("assemble", self._step_assemble, always_run=True),
            ],
            name="turn",
        )

    @property
    def fallback_text(self) -> str:
        return self._knowledge.fallback_message()

    def prepare(
        self,
        message: str,
        history: Sequence[HistoryEntry],
        context: TurnContext,
        session_id: Optional[str] = None,
    ) -> TurnPlan:
        """Purpose: Run every preparation step for one user message.
        Inputs/Outputs: Inputs are the message, rolling history and the frozen
            context; output is a TurnPlan with payload set.
        Side Effects / State: May perform one augmentation HTTP call.
        Dependencies: AdkAgent.run.
        Failure Modes: Augmentation failures degrade to no augmentation; other
            step errors propagate.
        If Removed: The proxy has nothing to send.
        Testing Notes: A trade-in question never reaches the augmenter.
        """
        # Build the plan from a snapshot and execute steps.
        plan = TurnPlan(
            session_id=session_id or uuid.uuid4().hex,
            message=message.strip(),
            history=list(history),
            context=context,
            today=self._clock(),
        )
        plan.steps = self._agent.run(plan)
        logger.info(
            "session=%s category=%s topics=%s comparison=%s hp=%s augmented=%s history=%d",
            plan.session_id,
            plan.category.value,
            ",".join(plan.topics) or "-",
            plan.comparison.is_comparison,
            plan.hp,
            bool(plan.augmentation),
            len(plan.history),
        )
        return plan

    def open_stream(self, plan: TurnPlan) -> StreamingCompletionProxy:
        if self._gemini is None:
            raise RuntimeError("no completion client configured")
        return StreamingCompletionProxy(self._gemini, self.fallback_text)

    def reply(self, plan: TurnPlan) -> ChatReply:
        """Purpose: Complete a prepared turn in one blocking call.
        Inputs/Outputs: Input is a TurnPlan; output is a ChatReply.
        Side Effects / State: One completion request.
        Dependencies: GeminiClient.generate_content.
        Failure Modes: Any completion error or empty reply yields the fallback
            message; the error is logged.
        If Removed: The non-streaming endpoint has no backend.
        Testing Notes: Make the client raise and expect the fallback text.
        """
        # Blocking completion with the same fallback rule as streaming.
        if plan.payload is None:
            raise ValueError("turn plan has no payload")
        text = ""
        if self._gemini is not None:
            try:
                text = self._gemini.generate_content(
                    plan.payload.contents, system_instruction=plan.payload.system_instruction
                )
            except Exception as exc:
                logger.warning("session=%s completion failed: %s", plan.session_id, exc)
                text = ""
        return ChatReply(
            reply=text or self.fallback_text,
            category=plan.category.value,
            is_comparison=plan.comparison.is_comparison,
            detected_topics=plan.topics,
        )

    def _step_classify(self, plan: TurnPlan) -> None:
        plan.category = classify(plan.message, has_active_subject_context=plan.has_subject)
        plan.topics = detect_topics(plan.message)
        plan.comparison = detect_comparison_query(plan.message)
        plan.hp = None if plan.comparison.is_comparison else detect_hp_query(plan.message)

    def _step_subject_details(self, plan: TurnPlan) -> None:
        subject = plan.context.subject
        if subject is None or not subject.id:
            return
        motor = self._inventory.motor_details(subject.id)
        if motor is None:
            return
        update = {}
        if subject.price is None and motor.price:
            update["price"] = motor.price
        if not subject.family and motor.family:
            update["family"] = motor.family
        if not subject.hp:
            update["hp"] = motor.horsepower
        if update:
            plan.context = plan.context.model_copy(update={"subject": subject.model_copy(update=update)})

    def _step_product_blocks(self, plan: TurnPlan) -> None:
        """Purpose: Add precomputed product text relevant to this message.
        Inputs/Outputs: Input is TurnPlan; appends to plan.extra_blocks.
        Side Effects / State: Reads cached inventory.
        Dependencies: build_comparison_block, build_hp_listing, catalogue_section.
        Failure Modes: Unknown HP values produce a nearby-options block.
        If Removed: HP and comparison answers lose prices and links.
        Testing Notes: "30 vs 60" adds a comparison block with a price difference.
        """
        # Comparison beats a single-HP listing; catalogue links are independent.
        motors = self._inventory.list_motors()
        comparison = plan.comparison
        if comparison.is_comparison and comparison.hp1 is not None and comparison.hp2 is not None:
            block = build_comparison_block(comparison.hp1, comparison.hp2, motors, self._knowledge.family_info)
            if block:
                plan.extra_blocks.append(block)
        elif plan.hp is not None:
            plan.extra_blocks.append(build_hp_listing(plan.hp, self._inventory.motors_for_hp(plan.hp), motors))
        section = self._knowledge.catalogue_section(plan.message)
        if section and plan.category in (Category.ACCESSORIES, Category.GENERAL, Category.NONE):
            url, label = section
            plan.extra_blocks.append(f"## CATALOGUE LINK\n{label}: {url}")

    def _step_augment(self, plan: TurnPlan) -> None:
        # Augmentation is optional; a failed lookup never fails the turn.
        try:
            plan.augmentation = self._augmenter.augment(plan.message, plan.category, plan.context.subject)
        except Exception as exc:
            logger.warning("augment step failed category=%s error=%s", plan.category.value, exc)
            plan.augmentation = None

    def _step_assemble(self, plan: TurnPlan) -> None:
        plan.payload = assemble(
            self._rules,
            InventorySnapshot.from_motors(self._inventory.list_motors()),
            self._inventory.active_promotions(plan.today),
            plan.context,
            plan.augmentation,
            plan.history,
            plan.message,
            self._knowledge.season_for_month(plan.today.month),
            topics=plan.topics,
            extra_blocks=plan.extra_blocks,
            history_turns=self._history_turns,
            financing_min_price=self._financing_min_price,
        )
