"""
Domain Models for Stylo Studio

This module contains the enums, dataclasses and Pydantic models shared by the
editor, quiz, checkout and admin flows.
Dataclasses describe in-memory session state; Pydantic models validate API
requests. Stored documents themselves stay schemaless dicts.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================


class ChatRole(str, Enum):
    """Chat message role values"""
    USER = "user"
    AI = "ai"


class MentionType(str, Enum):
    """Kinds of asset a chat mention can reference"""
    IMAGE = "image"
    COLLECTION = "collection"


class CollaboratorRole(str, Enum):
    """Project collaborator role values"""
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class OrderStatus(str, Enum):
    """Order status values"""
    PENDING = "Pending"
    PENDING_PAYMENT = "Pending Payment"
    AWAITING_USER_PAYMENT = "Awaiting User Payment"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


TERMINAL_ORDER_STATUSES = {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}
OPEN_ORDER_STATUSES = {
    OrderStatus.PENDING_PAYMENT.value,
    OrderStatus.IN_PROGRESS.value,
    OrderStatus.AWAITING_USER_PAYMENT.value,
}


class CouponType(str, Enum):
    """Coupon discount type values"""
    PERCENTAGE = "percentage"
    FLAT = "flat"


class QuestionType(str, Enum):
    """Quiz question input types"""
    TEXT = "text"
    TEXTAREA = "textarea"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    CONTACT = "contact"


class GenerationState(str, Enum):
    """Lifecycle of a single streamed AI generation"""
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


class NotificationType(str, Enum):
    """Notification banner styles"""
    SUCCESS = "success"
    ERROR = "error"


# =============================================================================
# SESSION MODELS (dataclasses for in-memory state)
# =============================================================================


@dataclass
class ChatMessage:
    """A single chat history entry"""
    role: ChatRole
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(role=ChatRole(data.get("role", "ai")), text=data.get("text", ""))


@dataclass
class MentionData:
    """The asset a mention points at"""
    id: str
    name: str
    url: Optional[str] = None


@dataclass
class ChatMention:
    """An inline chat reference to a project image or data collection"""
    type: MentionType
    data: MentionData

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "data": asdict(self.data)}


@dataclass
class ProjectImage:
    """Image uploaded to the CDN for a project"""
    id: str
    name: str
    url: str
    public_id: Optional[str] = None


@dataclass
class ProjectCollection:
    """User-created data bucket that generated forms submit into"""
    id: str
    name: str


@dataclass
class Notification:
    """User-visible message produced by a failed or completed action"""
    message: str
    type: NotificationType = NotificationType.SUCCESS
    blocking: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "type": self.type.value, "blocking": self.blocking}


@dataclass
class Question:
    """Quiz question definition"""
    id: str
    question: str
    type: QuestionType
    options: List[str] = field(default_factory=list)
    placeholder: Optional[str] = None
    required: bool = False
    triggers_ai: bool = False


@dataclass
class Plan:
    """A purchasable site template"""
    id: str
    name: str
    price: int
    page_limit: int
    description: Optional[str] = None
    pages: Optional[List[str]] = None


# =============================================================================
# API REQUEST/RESPONSE MODELS (using Pydantic for validation)
# =============================================================================


class SignupModel(BaseModel):
    """Request model for creating an account"""
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    display_name: Optional[str] = None


class LoginModel(BaseModel):
    """Request model for email/password sign-in"""
    email: str
    password: str


class ProjectCreate(BaseModel):
    """Request model for creating a project"""
    name: str = Field(..., min_length=1, max_length=200)


class ProjectUpdate(BaseModel):
    """Request model for saving a project"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    html_content: Optional[str] = None


class ShareRequest(BaseModel):
    """Request model for inviting a collaborator"""
    email: str
    role: CollaboratorRole = CollaboratorRole.EDITOR


class ChatSubmit(BaseModel):
    """Request model for sending a chat message to the AI"""
    text: str
    persona: Optional[str] = None


class ChatAction(BaseModel):
    """Request model for acting on an existing chat message"""
    action: Literal["edit", "rerun", "delete"]
    index: int = Field(..., ge=0)


class MentionSuggestRequest(BaseModel):
    """Request model for mention autocomplete"""
    text: str
    cursor: Optional[int] = Field(None, ge=0)


class MentionSelectRequest(BaseModel):
    """Request model for picking a mention suggestion"""
    text: str
    cursor: Optional[int] = Field(None, ge=0)
    type: MentionType
    id: str


class MentionRemoveRequest(BaseModel):
    """Request model for removing a mention"""
    text: str
    index: int = Field(..., ge=0)


class CollectionCreate(BaseModel):
    """Request model for creating a project data collection"""
    name: str = Field(..., min_length=1)


class ImageRename(BaseModel):
    """Request model for renaming a project image"""
    name: str = Field(..., min_length=1)


class QuizStart(BaseModel):
    """Start a quiz for a catalog template or an AI-generated plan"""
    template_id: str
    ai_plan: Optional[Dict[str, Any]] = None


class QuizAnswer(BaseModel):
    """Answer for the current quiz question"""
    value: Any = None


class QuizToggle(BaseModel):
    """Toggle a single checkbox option"""
    option: str


class QuizSubmit(BaseModel):
    """Final quiz step exit"""
    action: Literal["save", "checkout"]


class ApplyCouponRequest(BaseModel):
    """Request model for applying a coupon at checkout"""
    code: str


class PaymentSuccess(BaseModel):
    """Payment gateway success callback payload"""
    payment_id: str


class StatusUpdate(BaseModel):
    """Request model for an admin order status change"""
    status: OrderStatus


class CouponCreate(BaseModel):
    """Request model for creating a coupon"""
    code: str = Field(..., min_length=1)
    type: CouponType
    value: float = Field(..., ge=0)


class CouponToggle(BaseModel):
    """Request model for activating or deactivating a coupon"""
    is_active: bool


class SettingsUpdate(BaseModel):
    """Admin-managed API keys"""
    razorpay_key_id: Optional[str] = None
    gemini_api_key: Optional[str] = None


class UpdateRequestStatus(BaseModel):
    """Request model for an admin update-request status change"""
    status: Literal["Pending Review", "In Progress", "Completed", "Rejected"]


class UpdateRequestCreate(BaseModel):
    """Customer request for changes to a delivered order"""
    text: str


class ContactMessageCreate(BaseModel):
    """Public contact form submission"""
    name: str
    email: str
    message: str
