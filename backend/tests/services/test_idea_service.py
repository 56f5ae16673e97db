"""Tests for IdeaService autosave merging and wizard submission."""

import asyncio

import pytest

from ideaforge.core.exceptions import ForbiddenError, InvalidStateTransition, StateGuardError, ValidationError
from ideaforge.queue.manager import JobQueue
from ideaforge.queue.schemas import IdeaStatus
from ideaforge.services.idea_service import IdeaService, fallback_title
from ideaforge.services.job_launcher import JobLauncher

pytestmark = pytest.mark.unit


@pytest.fixture
def service(runner_fake, redis, session_factory):
    launcher = JobLauncher(runner_fake, session_factory, JobQueue(redis))
    return IdeaService(launcher, session_factory)


async def _ready(make_idea, runner_fake, **fields):
    questions = await runner_fake.generate_questions("idea")
    runner_fake.calls.clear()
    return await make_idea(
        status=IdeaStatus.QUESTIONS_READY,
        questions=questions,
        total_questions=len(questions),
        **fields,
    )


def test_fallback_title():
    assert fallback_title("Short idea text") == "Short idea text"
    assert fallback_title("x" * 60) == "x" * 50 + "..."


async def test_create_enqueues_question_generation(service, redis):
    idea = await service.create_idea("user_a", "A marketplace connecting dog walkers with busy owners")

    assert idea.status == "generating_questions"
    assert idea.title == "A marketplace connecting dog walkers with busy own..."
    assert await JobQueue(redis).get_length() == 1


async def test_concurrent_autosaves_merge(service, make_idea, runner_fake, load_idea):
    idea = await _ready(make_idea, runner_fake, wizard_answers={"target_customer": "Dog owners in big cities"})

    await asyncio.gather(
        service.autosave("user_a", str(idea.id), {"problem_frequency": "Daily"}, None),
        service.autosave("user_a", str(idea.id), {"startup_budget": 5000}, None),
        service.autosave("user_a", str(idea.id), {"channels": ["Partnerships"]}, 3),
    )

    stored = await load_idea(idea.id)
    assert stored.wizard_answers == {
        "target_customer": "Dog owners in big cities",
        "problem_frequency": "Daily",
        "startup_budget": 5000,
        "channels": ["Partnerships"],
    }
    assert stored.current_step == 3


async def test_autosave_overwrites_same_key(service, make_idea, runner_fake, load_idea):
    idea = await _ready(make_idea, runner_fake, wizard_answers={"problem_frequency": "Daily"})

    await service.autosave("user_a", str(idea.id), {"problem_frequency": "Weekly"}, None)

    assert (await load_idea(idea.id)).wizard_answers == {"problem_frequency": "Weekly"}


async def test_autosave_allowed_after_completion(service, make_idea, runner_fake):
    idea = await _ready(make_idea, runner_fake)
    await service.state_machine.transition(idea.id, IdeaStatus.QUESTIONS_READY, IdeaStatus.GENERATING_STAGE1)

    await service.autosave("user_a", str(idea.id), {"existing_solutions": "Spreadsheets"}, None)


async def test_autosave_other_users_idea(service, make_idea, runner_fake):
    idea = await _ready(make_idea, runner_fake)

    with pytest.raises(ForbiddenError):
        await service.autosave("user_b", str(idea.id), {"a": 1}, None)


async def test_update_rejects_status_with_answers(service, make_idea):
    idea = await make_idea()

    with pytest.raises(ValidationError):
        await service.update_idea("user_a", str(idea.id), wizard_answers={"a": 1}, status="generating_questions")


async def test_double_submit_has_one_winner(service, make_idea, runner_fake, redis):
    idea = await _ready(
        make_idea,
        runner_fake,
        wizard_answers={
            "target_customer": "Dog owners in big cities",
            "problem_frequency": "Daily",
            "startup_budget": 5000,
            "channels": ["Partnerships"],
        },
    )

    results = await asyncio.gather(
        service.complete_wizard("user_a", str(idea.id)),
        service.complete_wizard("user_a", str(idea.id)),
        return_exceptions=True,
    )

    assert results.count(IdeaStatus.GENERATING_STAGE1) == 1
    loser = next(r for r in results if isinstance(r, Exception))
    # Depending on timing the loser either sees the new status or loses the write
    assert isinstance(loser, (InvalidStateTransition, StateGuardError))
    assert await JobQueue(redis).get_length() == 1


async def test_complete_wizard_requires_questions(service, make_idea):
    idea = await make_idea(status=IdeaStatus.QUESTIONS_READY)

    with pytest.raises(StateGuardError, match="Questions not found"):
        await service.complete_wizard("user_a", str(idea.id))
