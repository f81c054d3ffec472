"""Advanced mode: a bounded loop of model-driven sequential steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigError, SolverError
from .models import (
    AdvancedResult,
    ProblemUnderstanding,
    SequentialSolution,
    SequentialStepOutput,
    StepReply,
)
from .orchestrator import PromptOrchestrator, SolveRequest
from .progress import Phase
from .prompts import build_sequential_step_prompt
from .sandbox import execute_snippet, summarize_execution

logger = logging.getLogger(__name__)

DEFAULT_FOCUS = "Achieve the main goal of the problem by thinking step-by-step."
CONCLUDE_FOCUS = "Summarize findings and conclude."


@dataclass
class StepLoopState:
    """Mutable loop bookkeeping. ``history`` is only ever appended to."""

    focus: str
    history: list[SequentialStepOutput] = field(default_factory=list)
    counter: int = 0
    done: bool = False
    halted: bool = False
    final_computed_answer: Any = None
    final_summary_text: str = ""


def halt_explanation(max_steps: int, focus: str) -> str:
    return (
        f"**Advanced mode exceeded maximum sequential steps ({max_steps}). Process halted.**"
        f"\n\nCurrent focus was: \"{focus}\""
    )


def error_explanation(focus: str, exc: BaseException) -> str:
    return (
        f"**Error processing AI response for sequential step (focus: \"{focus}\"):**"
        f"\n\n```\n{exc}\n```"
    )


class SequentialStepEngine(PromptOrchestrator):
    """Understand once, then iterate until the model signals a final step."""

    understanding_error_prefix = "Error understanding problem (advanced)"

    @property
    def max_steps(self) -> int:
        return max(1, int(self.config.max_sequential_steps))

    def solve(self, request: SolveRequest) -> AdvancedResult:  # type: ignore[override]
        try:
            understanding = self.understand(request)
            state = self.start_loop(understanding)
            while not state.done and state.counter < self.max_steps:
                self.run_iteration(request, understanding, state)
            self.finish_loop(state)
        finally:
            self.progress.publish(None)
        return self.build_result(request, understanding, state)

    def start_loop(self, understanding: ProblemUnderstanding) -> StepLoopState:
        return StepLoopState(focus=understanding.problem_goal.strip() or DEFAULT_FOCUS)

    def run_iteration(
        self,
        request: SolveRequest,
        understanding: ProblemUnderstanding,
        state: StepLoopState,
    ) -> None:
        """One model call; appends exactly one entry to the history."""

        state.counter += 1
        self._publish(
            Phase.SEQUENTIAL_SOLVING,
            f'Thinking about: "{state.focus}"',
            step=state.counter,
        )

        prompt = build_sequential_step_prompt(
            request.problem_text,
            understanding=understanding,
            history=tuple(state.history),
            focus=state.focus,
            subject=request.subject,
            has_image=request.has_image,
            has_document=request.has_document,
        )

        try:
            payload = self.call_json(prompt, request, max_tokens=self.config.step_max_tokens)
            reply = StepReply.from_payload(payload)
        except ConfigError:
            raise
        except SolverError as exc:
            logger.warning("Sequential step %s failed: %s", state.counter, exc)
            explanation = error_explanation(state.focus, exc)
            state.history.append(SequentialStepOutput(step_explanation=explanation))
            state.final_summary_text = explanation
            state.done = True
            return

        execution = None
        if reply.step_code:
            execution = execute_snippet(reply.step_code, policy=self.sandbox_policy)
            if execution.error:
                logger.info("Step %s code failed: %s", state.counter, summarize_execution(execution))

        step = SequentialStepOutput.from_execution(reply.step_explanation, reply.step_code, execution)
        state.history.append(step)

        if reply.is_final_step:
            state.done = True
            state.final_computed_answer = step.step_code_result if step.has_result else None
            state.final_summary_text = reply.step_explanation
        else:
            state.focus = reply.focus_for_next_step or CONCLUDE_FOCUS

    def finish_loop(self, state: StepLoopState) -> None:
        if state.done:
            return
        explanation = halt_explanation(self.max_steps, state.focus)
        state.history.append(SequentialStepOutput(step_explanation=explanation))
        state.final_summary_text = explanation
        state.halted = True
        logger.warning("Sequential solve halted after %s steps", state.counter)

    def build_result(
        self,
        request: SolveRequest,
        understanding: ProblemUnderstanding,
        state: StepLoopState,
    ) -> AdvancedResult:
        return AdvancedResult(
            problem_understanding=understanding,
            sequential_solution=SequentialSolution(
                steps=tuple(state.history),
                final_computed_answer=state.final_computed_answer,
                final_summary_text=state.final_summary_text,
                halted=state.halted,
            ),
            subject=request.subject.id,
        )
