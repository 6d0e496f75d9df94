"""
Order Quiz

A linear wizard that turns a chosen template into a priced order.

Questions are answered one at a time. Moving forward requires the current
answer to validate; moving back never does. The last step exits either by
saving the order for later (status ``Pending``) or by heading to checkout
(status ``Pending Payment`` plus a checkout handoff record).
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from app.auth import User
from app.libs.document_store import SERVER_TIMESTAMP, DocumentStore, DocumentStoreError, get_document_store
from app.libs.models import OrderStatus, Plan, Question, QuestionType
from app.libs.settings import API_KEYS_DOCUMENT, get_settings

logger = logging.getLogger("stylo.quiz")

ORDERS_COLLECTION = "orders"
HANDOFFS_COLLECTION = "checkout_handoffs"

LOGO_DESIGN_COST = 2499
CONTENT_CREATION_COST = 4999
LOGO_DESIGN_OPTION = "No, I need one designed"
CONTENT_HELP_OPTION = "I need help with content writing/sourcing images"

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")

# =============================================================================
# CATALOG
# =============================================================================

PLANS: Dict[str, Plan] = {
    plan.id: plan for plan in [
        Plan("clinic", "Clinic", 11999, 7),
        Plan("daycare", "Daycare Website", 10999, 7),
        Plan("educenter", "Educenter", 13999, 7),
        Plan("ecommerce", "Electro eCommerce", 24999, 15),
        Plan("etrain", "E-Train Master", 18999, 15),
        Plan("karma", "Karma Master", 6999, 3),
        Plan("kiddy", "Kiddy Master", 9999, 7),
        Plan("meditrust", "MediTrust", 12999, 7),
        Plan("organic", "Organic", 21999, 15),
        Plan("passion", "Passion", 5999, 3),
        Plan("topic-listing", "Topic Listing", 4999, 3),
        Plan("villa-agency", "Villa Agency", 14999, 7),
        Plan("glossy-touch", "Glossy Touch", 7999, 3),
        Plan("personal-shape", "Personal Shape", 4999, 3),
        Plan("nexus-flow", "Nexus Flow", 20999, 15),
    ]
}

PAGE_OPTIONS = [
    "Home", "About Us", "Services", "Projects", "Blog", "Contact Us", "Team", "Testimonials",
    "FAQ", "Gallery", "Careers", "Pricing", "Events", "Partners", "Shop",
]

QUESTIONS: List[Question] = [
    Question("siteName", "What is the name of your site?", QuestionType.TEXT,
             placeholder="e.g., Mujtaba's Creations", required=True),
    Question("siteDesc", "Briefly describe your website's purpose.", QuestionType.TEXTAREA,
             placeholder="e.g., A portfolio for my projects", required=True, triggers_ai=True),
    Question("pages", "Select the pages you need.", QuestionType.CHECKBOX, options=PAGE_OPTIONS),
    Question("domain", "Choose your domain option:", QuestionType.RADIO, options=[
        "Get a free subdomain (e.g., mysite.mujtaba.com)",
        "Register a new custom domain (e.g., www.mysite.com)",
    ]),
    Question("logo", "Do you have a brand logo?", QuestionType.RADIO,
             options=["Yes, I have a logo", LOGO_DESIGN_OPTION]),
    Question("branding", "Brand colors or fonts? (Optional)", QuestionType.TEXT,
             placeholder="e.g., Blue (#007BFF), Poppins font"),
    Question("content", "Are you providing the text and images?", QuestionType.RADIO,
             options=["Yes, all content is ready", CONTENT_HELP_OPTION]),
    Question("features", "Any special features? (Optional)", QuestionType.TEXTAREA,
             placeholder="e.g., Live chat, appointment booking..."),
    Question("contact", "Finally, please confirm your contact details.", QuestionType.CONTACT),
]


class QuizError(Exception):
    """Raised when a quiz cannot be started or submitted"""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def resolve_plan(template_id: str, ai_plan: Optional[Dict[str, Any]] = None) -> Plan:
    """Look up a catalog plan, or build one from an AI-generated plan record."""
    if template_id == "ai-generated":
        if not ai_plan:
            raise QuizError("AI template data not found in session.")
        try:
            return Plan(
                id=ai_plan["id"],
                name=ai_plan.get("name", "AI Plan"),
                price=int(ai_plan["price"]),
                page_limit=int(ai_plan["pageLimit"]),
                description=ai_plan.get("description"),
                pages=ai_plan.get("pages"),
            )
        except (KeyError, TypeError, ValueError):
            raise QuizError("There was an issue loading your custom-generated plan.")
    plan = PLANS.get(template_id)
    if plan is None:
        raise QuizError("Please go back and choose a valid template.")
    return plan


# =============================================================================
# AI SUGGESTIONS
# =============================================================================


def strip_code_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


class PlanSuggester:
    """Suggests pages, branding and features from the site description."""

    def __init__(self, api_key: str, model: Optional[str] = None, base_url: Optional[str] = None,
                 client: Optional[AsyncOpenAI] = None):
        settings = get_settings()
        self.model = model or settings.suggestion_model
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.openrouter_base_url,
            default_headers={"X-Title": "Order Quiz"},
        )

    @staticmethod
    def build_prompt(site_name: str, site_desc: str) -> str:
        options = ", ".join(f'"{o}"' for o in PAGE_OPTIONS)
        return (
            f'Based on the following website details, suggest some customizations. Website Name: "{site_name}". '
            f'Website Description: "{site_desc}". Please provide your response ONLY as a valid JSON object with three keys: '
            f'1. "pages": An array of strings with recommended page names from this list: [{options}]. '
            "Include essential pages like 'Home' and 'Contact Us'. "
            '2. "branding": A short string suggestion for brand colors or fonts. '
            '3. "features": A short string suggestion for one or two special features. '
            'Example: {"pages": ["Home", "About Us", "Services", "Contact Us", "Blog"],'
            '"branding": "A clean look with deep blue (#2c3e50) and a modern sans-serif font like Lato.",'
            '"features": "A simple contact form and a photo gallery for projects."}'
        )

    async def suggest(self, site_name: str, site_desc: str) -> Dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": self.build_prompt(site_name, site_desc)}],
        )
        content = response.choices[0].message.content or ""
        suggestions = json.loads(strip_code_fences(content))
        if not isinstance(suggestions, dict):
            raise ValueError("Suggestion response is not a JSON object")
        return suggestions


async def resolve_openrouter_key(store: DocumentStore) -> Optional[str]:
    try:
        snapshot = await store.get(API_KEYS_DOCUMENT)
        if snapshot.exists and snapshot.data.get("openRouter"):
            return snapshot.data["openRouter"]
    except DocumentStoreError as e:
        logger.warning("Using configured OpenRouter key, settings unavailable: %s", e)
    return get_settings().openrouter_api_key


# =============================================================================
# WIZARD
# =============================================================================


class QuizWizard:
    """Quiz state for one customer."""

    def __init__(self, user: User, plan: Plan, store: Optional[DocumentStore] = None,
                 suggester: Optional[PlanSuggester] = None):
        self.user = user
        self.plan = plan
        self.store = store or get_document_store()
        self.suggester = suggester
        self.questions = QUESTIONS
        self.index = 0
        self.answers: Dict[str, Any] = {}
        self.error: Optional[str] = None
        self.warning: Optional[str] = None
        self.is_submitting = False
        self.order_id: Optional[str] = None

        if plan.id.startswith("ai-"):
            self.answers["siteName"] = plan.name or ""
            self.answers["siteDesc"] = plan.description or ""
        if isinstance(plan.pages, list):
            self.answers["pages"] = list(plan.pages)[:plan.page_limit]

    @property
    def current(self) -> Question:
        return self.questions[self.index]

    @property
    def is_last_step(self) -> bool:
        return self.index == len(self.questions) - 1

    @property
    def progress_text(self) -> str:
        return f"Step {self.index + 1} of {len(self.questions)}"

    # Pricing

    def price_breakdown(self) -> Dict[str, Any]:
        add_ons = {
            "logo": LOGO_DESIGN_COST if self.answers.get("logo") == LOGO_DESIGN_OPTION else 0,
            "content": CONTENT_CREATION_COST if self.answers.get("content") == CONTENT_HELP_OPTION else 0,
        }
        return {
            "basePrice": self.plan.price,
            "addOns": add_ons,
            "totalPrice": self.plan.price + sum(add_ons.values()),
        }

    @property
    def total_price(self) -> int:
        return self.price_breakdown()["totalPrice"]

    # Answers

    def set_answer(self, value: Any) -> None:
        """
        Record the current answer without validating it.

        Raises:
            QuizError: If the value has the wrong shape for the question type
        """
        question = self.current
        if question.type == QuestionType.CHECKBOX:
            if value is not None and not isinstance(value, list):
                raise QuizError("Please select pages from the list.")
            selected = [v for v in (value or []) if isinstance(v, str) and v in question.options]
            if len(selected) > self.plan.page_limit:
                self.warning = f"You can select up to {self.plan.page_limit} pages for this plan."
                selected = selected[:self.plan.page_limit]
            value = selected
        elif question.type in (QuestionType.TEXT, QuestionType.TEXTAREA):
            if value is not None and not isinstance(value, str):
                raise QuizError("Please enter text for this question.")
            value = (value or "").strip()
        elif question.type == QuestionType.RADIO:
            if value is not None and not isinstance(value, str):
                raise QuizError("Please select an option.")
        elif question.type == QuestionType.CONTACT:
            if not isinstance(value, dict):
                raise QuizError("Please fill all contact fields.")
            value = {k: str(value.get(k) or "").strip() for k in ("name", "email", "whatsapp")}
        self.answers[question.id] = value

    def toggle(self, option: str) -> bool:
        """
        Toggle one checkbox option.

        Returns:
            False when selecting it would exceed the plan's page limit; the
            selection is left unchanged and ``warning`` explains why.
        """
        question = self.current
        if question.type != QuestionType.CHECKBOX:
            raise QuizError("The current question has no options to toggle.")
        if option not in question.options:
            raise QuizError(f"Unknown option: {option}")
        selected = list(self.answers.get(question.id) or [])
        self.warning = None
        if option in selected:
            selected.remove(option)
        elif len(selected) >= self.plan.page_limit:
            self.warning = f"You can select up to {self.plan.page_limit} pages for this plan."
            return False
        else:
            selected.append(option)
        self.answers[question.id] = selected
        return True

    def default_contact(self) -> Dict[str, str]:
        saved = self.answers.get("contact") or {}
        return {
            "name": saved.get("name") or self.user.display_name or "",
            "email": saved.get("email") or self.user.email or "",
            "whatsapp": saved.get("whatsapp") or "",
        }

    def validate_current(self) -> bool:
        question = self.current
        answer = self.answers.get(question.id)
        error = None
        if question.type in (QuestionType.TEXT, QuestionType.TEXTAREA):
            if question.required and not answer:
                error = "This field is required."
        elif question.type == QuestionType.RADIO:
            if answer not in question.options:
                error = "Please select an option."
        elif question.type == QuestionType.CHECKBOX:
            if not answer:
                error = "Please select at least one page."
            elif len(answer) > self.plan.page_limit:
                error = f"You can select up to {self.plan.page_limit} pages for this plan."
        elif question.type == QuestionType.CONTACT:
            contact = answer if isinstance(answer, dict) else {}
            if not (contact.get("name") and contact.get("email") and contact.get("whatsapp")):
                error = "Please fill all contact fields."
            elif not EMAIL_PATTERN.match(contact["email"]):
                error = "Please enter a valid email."
        self.error = error
        return error is None

    # Navigation

    async def next(self) -> bool:
        if self.is_last_step or not self.validate_current():
            return False
        if self.current.triggers_ai:
            await self._apply_suggestions()
        self.index += 1
        return True

    def back(self) -> bool:
        if self.index == 0:
            return False
        self.index -= 1
        self.error = None
        return True

    async def _apply_suggestions(self) -> None:
        site_name, site_desc = self.answers.get("siteName"), self.answers.get("siteDesc")
        if self.suggester is None or not site_name or not site_desc:
            return
        try:
            suggestions = await self.suggester.suggest(site_name, site_desc)
        except (OpenAIError, ValueError, KeyError, IndexError, AttributeError) as e:
            logger.error("AI suggestion failed: %s", e)
            return
        pages = suggestions.get("pages")
        if isinstance(pages, list):
            self.answers["pages"] = [p for p in pages if p in PAGE_OPTIONS][:self.plan.page_limit]
        if isinstance(suggestions.get("branding"), str):
            self.answers["branding"] = suggestions["branding"]
        if isinstance(suggestions.get("features"), str):
            self.answers["features"] = suggestions["features"]

    # Submission

    async def submit(self, action: str) -> Optional[Dict[str, Any]]:
        """
        Persist the order from the last step.

        Args:
            action: ``save`` (order stays Pending) or ``checkout``

        Returns:
            ``{"order_id", "status", "handoff"}``; None when validation fails
            or a submission is already running
        """
        if action not in ("save", "checkout"):
            raise QuizError(f"Unknown quiz action: {action}")
        if self.is_submitting or not self.is_last_step or not self.validate_current():
            return None
        self.is_submitting = True
        price = self.price_breakdown()
        status = OrderStatus.PENDING_PAYMENT if action == "checkout" else OrderStatus.PENDING
        order = {
            "userId": self.user.sub,
            "userEmail": self.user.email,
            "contactDetails": self.answers.get("contact"),
            "selectedTemplate": self.plan.name,
            "templateId": self.plan.id,
            "estimatedPrice": price["totalPrice"],
            "priceBreakdown": price,
            "status": status.value,
            "createdAt": SERVER_TIMESTAMP,
            "fullCustomizations": dict(self.answers),
        }
        try:
            order_id = await self.store.add(ORDERS_COLLECTION, order)
            handoff = None
            if action == "checkout":
                handoff = {
                    "price": price["totalPrice"],
                    "orderId": order_id,
                    "summary": [{"question": "Template", "text": self.plan.name}],
                    "contact": self.answers.get("contact"),
                }
                await self.store.set(f"{HANDOFFS_COLLECTION}/{self.user.sub}", handoff)
        except DocumentStoreError as e:
            logger.error("Order submission failed: %s", e)
            self.error = f"Failed to save order: {e.message}. Please try again."
            self.is_submitting = False
            return None
        self.order_id = order_id
        logger.info("Order %s saved with status %s", order_id, status.value)
        return {"order_id": order_id, "status": status.value, "handoff": handoff}

    def view(self) -> Dict[str, Any]:
        question = self.current
        if question.type == QuestionType.CONTACT:
            value: Any = self.default_contact()
        else:
            value = self.answers.get(question.id, [] if question.type == QuestionType.CHECKBOX else "")
        return {
            "plan": {"id": self.plan.id, "name": self.plan.name, "price": self.plan.price,
                     "pageLimit": self.plan.page_limit},
            "step": self.index,
            "progress": self.progress_text,
            "question": {
                "id": question.id,
                "question": question.question,
                "type": question.type.value,
                "options": question.options,
                "placeholder": question.placeholder,
                "subtitle": (
                    f"You can select up to {self.plan.page_limit} pages for this plan."
                    if question.type == QuestionType.CHECKBOX else None
                ),
                "value": value,
            },
            "is_first_step": self.index == 0,
            "is_last_step": self.is_last_step,
            "price": self.price_breakdown(),
            "error": self.error,
            "warning": self.warning,
        }


_wizards: Dict[str, QuizWizard] = {}


async def start_quiz(user: User, template_id: str, ai_plan: Optional[Dict[str, Any]] = None,
                     store: Optional[DocumentStore] = None) -> QuizWizard:
    """Begin a fresh quiz for the user, replacing any unfinished one."""
    store = store or get_document_store()
    plan = resolve_plan(template_id, ai_plan)
    api_key = await resolve_openrouter_key(store)
    suggester = PlanSuggester(api_key) if api_key else None
    wizard = QuizWizard(user, plan, store, suggester)
    _wizards[user.sub] = wizard
    return wizard


def get_quiz(user: User) -> QuizWizard:
    wizard = _wizards.get(user.sub)
    if wizard is None:
        raise QuizError("No quiz in progress. Please choose a template first.", status_code=404)
    return wizard


def end_quiz(user_id: str) -> None:
    _wizards.pop(user_id, None)
