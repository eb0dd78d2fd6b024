"""Exam attempt controller.

Drives one attempt from the test-taker's side: loads the attempt, runs the countdown,
persists answers (on navigation and on a fixed autosave interval) and finalizes the
attempt on manual submit, on time expiry, or on exit.

All state changes go through ``next_state``; timers are owned asyncio tasks that are
cancelled by ``close()``.
"""

import asyncio
import random
from collections.abc import Callable, Sequence
from enum import Enum
from uuid import UUID

import httpx

from examdesk.client.api import AttemptApiClient, AttemptApiError
from examdesk.core.config import settings
from examdesk.core.logging import get_logger
from examdesk.models.attempt import ACTIVE_STATUSES, AttemptStatus
from examdesk.schemas.attempt import AttemptOut, SubmitResponse
from examdesk.schemas.exam import ExamSummary, QuestionOut

logger = get_logger(__name__)


class AttemptState(str, Enum):
    """Controller states."""

    LOADING = "loading"
    INSTRUCTIONS = "instructions"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


class ControllerEvent(str, Enum):
    """Inputs to the controller state machine."""

    LOADED = "loaded"
    INSTRUCTIONS_DISMISSED = "instructions_dismissed"
    NAVIGATED = "navigated"
    SUBMIT_REQUESTED = "submit_requested"
    TIME_EXPIRED = "time_expired"
    SUBMIT_SUCCEEDED = "submit_succeeded"
    SUBMIT_FAILED = "submit_failed"
    SUBMIT_FAILED_EXPIRED = "submit_failed_expired"
    EXIT_REQUESTED = "exit_requested"


TRANSITIONS: dict[tuple[AttemptState, ControllerEvent], AttemptState] = {
    (AttemptState.LOADING, ControllerEvent.LOADED): AttemptState.INSTRUCTIONS,
    (AttemptState.INSTRUCTIONS, ControllerEvent.INSTRUCTIONS_DISMISSED): AttemptState.ACTIVE,
    (AttemptState.INSTRUCTIONS, ControllerEvent.TIME_EXPIRED): AttemptState.SUBMITTING,
    (AttemptState.INSTRUCTIONS, ControllerEvent.EXIT_REQUESTED): AttemptState.SUBMITTED,
    (AttemptState.ACTIVE, ControllerEvent.NAVIGATED): AttemptState.ACTIVE,
    (AttemptState.ACTIVE, ControllerEvent.SUBMIT_REQUESTED): AttemptState.SUBMITTING,
    (AttemptState.ACTIVE, ControllerEvent.TIME_EXPIRED): AttemptState.SUBMITTING,
    (AttemptState.ACTIVE, ControllerEvent.EXIT_REQUESTED): AttemptState.SUBMITTED,
    (AttemptState.SUBMITTING, ControllerEvent.SUBMIT_SUCCEEDED): AttemptState.SUBMITTED,
    (AttemptState.SUBMITTING, ControllerEvent.SUBMIT_FAILED): AttemptState.ACTIVE,
    (AttemptState.SUBMITTING, ControllerEvent.SUBMIT_FAILED_EXPIRED): AttemptState.EXPIRED,
    # Retry after a failed auto-submit
    (AttemptState.EXPIRED, ControllerEvent.SUBMIT_REQUESTED): AttemptState.SUBMITTING,
    (AttemptState.EXPIRED, ControllerEvent.EXIT_REQUESTED): AttemptState.SUBMITTED,
}

# States in which the clock runs and answers can still be saved
RUNNING_STATES = frozenset({AttemptState.INSTRUCTIONS, AttemptState.ACTIVE})

# The clock keeps counting while a submit is in flight
COUNTING_STATES = RUNNING_STATES | {AttemptState.SUBMITTING}


class IllegalTransitionError(Exception):
    """Event not allowed in the current state."""

    def __init__(self, state: AttemptState, event: ControllerEvent):
        self.state = state
        self.event = event
        super().__init__(f"Cannot handle {event.value} in state {state.value}")


class SubmitFailedError(Exception):
    """Final submit did not reach the server. The attempt is NOT submitted."""


class AttemptClosedError(Exception):
    """The attempt is already finished and cannot be driven."""


def next_state(state: AttemptState, event: ControllerEvent) -> AttemptState:
    """Single transition function for the controller."""
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise IllegalTransitionError(state, event) from None


def presentation_order(
    questions: Sequence[QuestionOut],
    attempt_id: UUID,
    shuffle: bool,
) -> list[QuestionOut]:
    """
    Order questions for display.

    Shuffled exams get a Fisher-Yates permutation seeded by the attempt id, so the order
    is stable across reloads of the same attempt.
    """
    ordered = sorted(questions, key=lambda q: q.order_number)
    if shuffle:
        random.Random(str(attempt_id)).shuffle(ordered)
    return ordered


class AttemptController:
    """Client-side state machine for one timed attempt."""

    def __init__(
        self,
        api: AttemptApiClient,
        attempt_id: UUID,
        *,
        tick_seconds: float = 1.0,
        autosave_interval: float | None = None,
        warning_seconds: int | None = None,
        on_warning: Callable[[int], None] | None = None,
        on_submitted: Callable[[SubmitResponse], None] | None = None,
        on_submit_failed: Callable[[Exception], None] | None = None,
    ):
        self.api = api
        self.attempt_id = attempt_id
        self.tick_seconds = tick_seconds
        self.autosave_interval = (
            autosave_interval
            if autosave_interval is not None
            else settings.AUTOSAVE_INTERVAL_SECONDS
        )
        self.warning_seconds = (
            warning_seconds if warning_seconds is not None else settings.TIME_WARNING_SECONDS
        )
        self.on_warning = on_warning
        self.on_submitted = on_submitted
        self.on_submit_failed = on_submit_failed

        self.state = AttemptState.LOADING
        self.attempt: AttemptOut | None = None
        self.exam: ExamSummary | None = None
        self.questions: list[QuestionOut] = []
        self.current_index = 0
        self.remaining_seconds = 0
        self.result: SubmitResponse | None = None
        self.submit_error: Exception | None = None

        self._answers: dict[UUID, str] = {}
        self._seq: dict[UUID, int] = {}
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._warned = False
        self._exiting = False
        self._closed = False
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _dispatch(self, event: ControllerEvent) -> AttemptState:
        previous = self.state
        self.state = next_state(self.state, event)
        if previous != self.state:
            logger.info(
                "Attempt controller transition",
                extra={
                    "attempt_id": str(self.attempt_id),
                    "event": event.value,
                    "from_state": previous.value,
                    "to_state": self.state.value,
                },
            )
        return self.state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current_question(self) -> QuestionOut:
        return self.questions[self.current_index]

    @property
    def current_answer(self) -> str | None:
        return self._answers.get(self.current_question.id)

    @property
    def answers(self) -> dict[UUID, str]:
        return dict(self._answers)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self, start_timers: bool = True) -> None:
        """
        Fetch the attempt, its questions and saved answers.

        Remaining time comes from the server (started_at + duration against the server
        clock); the local clock is never consulted.

        Raises:
            AttemptClosedError: the attempt is already finished
            IllegalTransitionError: already loaded
        """
        if self.state != AttemptState.LOADING:
            raise IllegalTransitionError(self.state, ControllerEvent.LOADED)

        state = await self.api.get_attempt(self.attempt_id)
        if state.attempt.status not in ACTIVE_STATUSES:
            raise AttemptClosedError(f"Attempt is {state.attempt.status.value}")

        questions = await self.api.list_questions(state.attempt.exam_id)
        answers = await self.api.list_answers(self.attempt_id)

        self.attempt = state.attempt
        self.exam = state.exam
        self.remaining_seconds = state.timing.remaining_seconds
        self.questions = presentation_order(
            questions, self.attempt_id, state.exam.shuffle_questions
        )
        self.current_index = 0
        for answer in answers:
            self._answers[answer.question_id] = answer.answer_text
            self._seq[answer.question_id] = answer.client_seq or 0

        self._dispatch(ControllerEvent.LOADED)
        self._maybe_warn()

        if start_timers:
            self._tasks = [
                asyncio.create_task(self._run_countdown()),
                asyncio.create_task(self._run_autosave()),
            ]

    def dismiss_instructions(self) -> None:
        self._dispatch(ControllerEvent.INSTRUCTIONS_DISMISSED)

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def set_answer(self, answer_text: str, question_id: UUID | None = None) -> None:
        """Hold an answer in memory. Persisted on navigation, autosave and submit."""
        if self.state not in RUNNING_STATES:
            raise IllegalTransitionError(self.state, ControllerEvent.NAVIGATED)
        self._answers[question_id or self.current_question.id] = answer_text

    def _lock_for(self, question_id: UUID) -> asyncio.Lock:
        if question_id not in self._locks:
            self._locks[question_id] = asyncio.Lock()
        return self._locks[question_id]

    async def flush(self, question_id: UUID, raise_transport_errors: bool = False) -> bool:
        """
        Save the held answer for one question.

        Text and client_seq are captured at call time; writes for the same question are
        serialized so the server sees them in issue order. Failures are logged and
        swallowed unless ``raise_transport_errors`` is set.

        Returns:
            True if the save reached the server
        """
        if question_id not in self._answers:
            return False
        answer_text = self._answers[question_id]
        self._seq[question_id] = self._seq.get(question_id, 0) + 1
        client_seq = self._seq[question_id]

        async with self._lock_for(question_id):
            try:
                await self.api.save_answer(
                    self.attempt_id, question_id, answer_text, client_seq=client_seq
                )
            except httpx.HTTPError as e:
                if raise_transport_errors:
                    raise
                logger.warning(
                    f"Answer flush failed: {e}",
                    extra={"attempt_id": str(self.attempt_id), "question_id": str(question_id)},
                )
                return False
            except AttemptApiError as e:
                logger.warning(
                    f"Answer flush rejected: {e}",
                    extra={"attempt_id": str(self.attempt_id), "question_id": str(question_id)},
                )
                return False
        return True

    async def flush_current(self) -> bool:
        return await self.flush(self.current_question.id)

    async def autosave_all(self, raise_transport_errors: bool = False) -> None:
        """Re-save every held answer (idempotent upsert on the server)."""
        await asyncio.gather(
            *(self.flush(qid, raise_transport_errors) for qid in list(self._answers))
        )

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def jump_to(self, index: int) -> None:
        """Flush the current answer, then move to ``index``."""
        if self.state != AttemptState.ACTIVE:
            raise IllegalTransitionError(self.state, ControllerEvent.NAVIGATED)
        if not 0 <= index < len(self.questions):
            raise IndexError(f"Question index {index} out of range")

        await self.flush_current()
        self.current_index = index
        self._dispatch(ControllerEvent.NAVIGATED)

    async def next(self) -> bool:
        """Move forward one question. Returns False at the last question."""
        if self.current_index + 1 >= len(self.questions):
            return False
        await self.jump_to(self.current_index + 1)
        return True

    async def previous(self) -> bool:
        """Move back one question. Returns False at the first question."""
        if self.current_index == 0:
            return False
        await self.jump_to(self.current_index - 1)
        return True

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _maybe_warn(self) -> None:
        if (
            not self._warned
            and 0 < self.remaining_seconds <= self.warning_seconds
            and self.state in RUNNING_STATES
        ):
            self._warned = True
            if self.on_warning:
                self.on_warning(self.remaining_seconds)

    async def tick(self) -> None:
        """
        One countdown step. Triggers auto-submit when time runs out.

        Keeps counting while a submit is in flight, so a failed submit returns to a
        clock that is still current.
        """
        if self._closed or self.state not in COUNTING_STATES:
            return
        self.remaining_seconds = max(0, self.remaining_seconds - 1)
        self._maybe_warn()
        if self.remaining_seconds == 0:
            await self._auto_submit()

    async def _run_countdown(self) -> None:
        if self.remaining_seconds == 0:
            await self._auto_submit()
            return
        while not self._closed and self.state in COUNTING_STATES:
            await asyncio.sleep(self.tick_seconds)
            await self.tick()

    async def _run_autosave(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.autosave_interval)
            if self._closed:
                return
            if self.state in RUNNING_STATES:
                await self.autosave_all()

    # ------------------------------------------------------------------
    # Submit / exit
    # ------------------------------------------------------------------

    async def _finalize(self) -> SubmitResponse:
        """Flush everything, then submit. Expects state ``submitting``."""
        try:
            await self.autosave_all(raise_transport_errors=True)
            result = await self.api.submit_attempt(self.attempt_id)
        except (httpx.HTTPError, AttemptApiError) as e:
            self.submit_error = e
            failed = (
                ControllerEvent.SUBMIT_FAILED_EXPIRED
                if self.remaining_seconds <= 0
                else ControllerEvent.SUBMIT_FAILED
            )
            self._dispatch(failed)
            logger.error(
                f"Attempt submit failed: {e}",
                extra={"attempt_id": str(self.attempt_id), "to_state": self.state.value},
            )
            raise SubmitFailedError(str(e)) from e

        self.result = result
        self.submit_error = None
        self._dispatch(ControllerEvent.SUBMIT_SUCCEEDED)
        await self._cancel_tasks()
        if self.on_submitted:
            self.on_submitted(result)
        return result

    async def submit(self) -> SubmitResponse:
        """
        Manual submit.

        Raises:
            IllegalTransitionError: not in a state that can submit
            SubmitFailedError: submit did not succeed; ``retry_submit()`` may be called
        """
        self._dispatch(ControllerEvent.SUBMIT_REQUESTED)
        return await self._finalize()

    async def retry_submit(self) -> SubmitResponse:
        """Retry after a failed submit, from ``active`` or ``expired``."""
        return await self.submit()

    async def _auto_submit(self) -> None:
        if self._exiting or self.state not in RUNNING_STATES:
            return
        self._dispatch(ControllerEvent.TIME_EXPIRED)
        try:
            await self._finalize()
        except SubmitFailedError as e:
            if self.on_submit_failed:
                self.on_submit_failed(e)

    async def exit(self) -> None:
        """
        Leave early: flush all answers, mark the attempt completed, tear down.

        Raises:
            SubmitFailedError: the status change did not reach the server
        """
        # Validate before any network effect
        next_state(self.state, ControllerEvent.EXIT_REQUESTED)

        # Auto-submit is held off while the exit is in flight
        self._exiting = True
        try:
            await self.autosave_all()
            await self.api.update_attempt_status(self.attempt_id, AttemptStatus.COMPLETED)
        except (httpx.HTTPError, AttemptApiError) as e:
            self.submit_error = e
            raise SubmitFailedError(str(e)) from e
        finally:
            self._exiting = False

        self._dispatch(ControllerEvent.EXIT_REQUESTED)
        await self.close()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

    async def close(self) -> None:
        """Stop the countdown and autosave. Later ticks are no-ops."""
        self._closed = True
        await self._cancel_tasks()
