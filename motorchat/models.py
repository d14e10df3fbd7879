from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]
Reaction = Literal["up", "down", "none"]


class HistoryEntry(BaseModel):
    """Single role/content pair from the rolling conversation history."""
    role: Role
    content: str


class SubjectProduct(BaseModel):
    """Motor the shopper is currently viewing or previewing."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())

    id: Optional[str] = None
    model: str = ""
    hp: float = 0
    price: Optional[float] = None
    family: Optional[str] = None
    description: Optional[str] = None


class QuoteProgress(BaseModel):
    """Position of the shopper inside the quote builder."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    step: int = 1
    total: int = 6
    selected_package: Optional[str] = Field(default=None, alias="selectedPackage")
    trade_in_value: Optional[float] = Field(default=None, alias="tradeInValue")


class TurnContext(BaseModel):
    """Page/product/progress snapshot taken when a message is sent."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    subject: Optional[SubjectProduct] = None
    page: str = "/"
    progress: Optional[QuoteProgress] = None
    augmentation_hints: Tuple[str, ...] = Field(default=(), alias="augmentationHints")


class ChatRequest(BaseModel):
    """Inbound turn request for the relay and non-streaming endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    conversation_history: List[HistoryEntry] = Field(default_factory=list, alias="conversationHistory")
    context: TurnContext = Field(default_factory=TurnContext)


class ChatReply(BaseModel):
    """Non-streaming reply payload."""
    reply: str
    category: str
    is_comparison: bool
    detected_topics: List[str]


class LeadCapture(BaseModel):
    kind: Literal["lead_capture"] = "lead_capture"
    name: str
    phone: str
    email: Optional[str] = None


class SmsRequest(BaseModel):
    kind: Literal["sms_request"] = "sms_request"
    name: Optional[str] = None
    phone: str
    content_kind: str


class PriceAlert(BaseModel):
    kind: Literal["price_alert"] = "price_alert"
    name: Optional[str] = None
    phone: str
    hp: Optional[float] = None


class FinancingOffer(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    kind: Literal["financing_offer"] = "financing_offer"
    price: float
    monthly_payment: float
    term_months: int
    rate: float
    motor_model: Optional[str] = None


CommandPayload = Annotated[
    Union[LeadCapture, SmsRequest, PriceAlert, FinancingOffer],
    Field(discriminator="kind"),
]


class Message(BaseModel):
    """Chat message as held by a live session."""
    id: str
    text: str
    role: Role
    created_at: float
    streaming: bool = False
    reaction: Reaction = "none"
    commands: List[CommandPayload] = Field(default_factory=list)


class StoredMessage(BaseModel):
    """Persisted message record."""
    id: str
    role: Role
    content: str
    timestamp: float
    reaction: Reaction = "none"
    meta: Optional[Dict[str, Any]] = None


class OpenRequest(BaseModel):
    page: str = "/"
    subject: Optional[SubjectProduct] = None


class OpenResponse(BaseModel):
    session_id: str
    state: str
    subject_category: str
    show_history_banner: bool
    messages: List[Message]
    prompts: List[str] = Field(default_factory=list)


class SendRequest(BaseModel):
    message: str = Field(min_length=1)
    context: Optional[TurnContext] = None


class AutoSendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    initial_message: str = Field(min_length=1, alias="initialMessage")


class ReactionRequest(BaseModel):
    message_id: str
    reaction: Reaction
