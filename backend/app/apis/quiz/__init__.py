"""Quiz API - the order wizard that turns a chosen template into an order."""

from fastapi import APIRouter, HTTPException

from app.auth import AuthorizedUser
from app.libs.models import QuizAnswer, QuizStart, QuizSubmit, QuizToggle
from app.libs.quiz import PLANS, QuizError, end_quiz, get_quiz, start_quiz

router = APIRouter()


def _wizard(user):
    try:
        return get_quiz(user)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/quiz/plans")
async def list_plans():
    return {
        "plans": [
            {"id": p.id, "name": p.name, "price": p.price, "pageLimit": p.page_limit}
            for p in PLANS.values()
        ]
    }


@router.post("/quiz/start")
async def start(body: QuizStart, user: AuthorizedUser):
    """
    Start the wizard for a catalog template.

    Use ``template_id="ai-generated"`` with ``ai_plan`` for a plan produced
    by the AI planner.
    """
    try:
        wizard = await start_quiz(user, body.template_id, body.ai_plan)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return wizard.view()


@router.get("/quiz")
async def current(user: AuthorizedUser):
    return _wizard(user).view()


@router.post("/quiz/answer")
async def answer(body: QuizAnswer, user: AuthorizedUser):
    wizard = _wizard(user)
    try:
        wizard.set_answer(body.value)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return wizard.view()


@router.post("/quiz/toggle")
async def toggle(body: QuizToggle, user: AuthorizedUser):
    """Toggle one page option; over the plan limit the selection is kept as is."""
    wizard = _wizard(user)
    try:
        accepted = wizard.toggle(body.option)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"accepted": accepted, **wizard.view()}


@router.post("/quiz/next")
async def next_step(user: AuthorizedUser):
    wizard = _wizard(user)
    moved = await wizard.next()
    return {"moved": moved, **wizard.view()}


@router.post("/quiz/back")
async def previous_step(user: AuthorizedUser):
    wizard = _wizard(user)
    moved = wizard.back()
    return {"moved": moved, **wizard.view()}


@router.post("/quiz/submit")
async def submit(body: QuizSubmit, user: AuthorizedUser):
    """
    Finish the quiz.

    ``save`` keeps the order Pending for later; ``checkout`` marks it
    Pending Payment and prepares the checkout handoff.
    """
    wizard = _wizard(user)
    try:
        result = await wizard.submit(body.action)
    except QuizError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if result is None:
        if wizard.is_submitting:
            raise HTTPException(status_code=409, detail="Order is already being submitted.")
        raise HTTPException(status_code=400, detail=wizard.error or "Please complete the quiz first.")
    end_quiz(user.sub)
    return {
        **result,
        "redirect": "/checkout" if body.action == "checkout" else "/dashboard",
    }
