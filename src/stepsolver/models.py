"""Structured values produced by the solve pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import ExecutionError, ParseError, ValidationError
from .sandbox import SandboxExecution
from .sanitizer import coerce_bool, coerce_str, coerce_str_list


class SolveMode(str, Enum):
    STANDARD = "standard"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class ProblemUnderstanding:
    restated_problem: str
    key_information: tuple[str, ...] = ()
    problem_goal: str = ""
    image_acknowledgement: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProblemUnderstanding":
        restated = coerce_str(payload.get("restatedProblem")).strip()
        if not restated:
            raise ParseError(str(payload)[:400], "missing required field 'restatedProblem'")
        return cls(
            restated_problem=restated,
            key_information=tuple(coerce_str_list(payload.get("keyInformation"))),
            problem_goal=coerce_str(payload.get("problemGoal")),
            image_acknowledgement=coerce_str(payload.get("imageAcknowledgement")),
        )

    def as_context(self) -> str:
        """Markdown block replayed into later prompts."""

        key_info = "\n".join(f"- {item}" for item in self.key_information)
        return (
            "Problem Analysis (Markdown):\n"
            f"- Restated Problem:\n{self.restated_problem}\n"
            f"- Key Information:\n{key_info}\n"
            f"- Goal:\n{self.problem_goal}\n"
            f"- Image:\n{self.image_acknowledgement}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "restatedProblem": self.restated_problem,
            "keyInformation": list(self.key_information),
            "problemGoal": self.problem_goal,
            "imageAcknowledgement": self.image_acknowledgement,
        }


@dataclass(frozen=True)
class SolutionStep:
    explanation: str
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"explanation": self.explanation}
        if self.code:
            payload["code"] = self.code
        return payload


def parse_solution_steps(value: Any) -> list[SolutionStep]:
    steps: list[SolutionStep] = []
    if not isinstance(value, list):
        return steps
    for item in value:
        if isinstance(item, str):
            if item.strip():
                steps.append(SolutionStep(explanation=item))
            continue
        if not isinstance(item, dict):
            continue
        explanation = coerce_str(item.get("explanation")).strip()
        code = coerce_str(item.get("code")).strip() or None
        if explanation or code:
            steps.append(SolutionStep(explanation=explanation, code=code))
    return steps


@dataclass(frozen=True)
class SequentialStepOutput:
    step_explanation: str
    step_code: str | None = None
    step_code_result: Any = None
    step_code_error: str | None = None
    has_result: bool = False

    @classmethod
    def from_execution(
        cls,
        explanation: str,
        code: str | None,
        execution: SandboxExecution | None,
    ) -> "SequentialStepOutput":
        if execution is None:
            return cls(step_explanation=explanation, step_code=code)
        return cls(
            step_explanation=explanation,
            step_code=code,
            step_code_result=execution.result,
            step_code_error=execution.error,
            has_result=execution.has_result,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"stepExplanation": self.step_explanation}
        if self.step_code:
            payload["stepCode"] = self.step_code
        if self.has_result:
            payload["stepCodeResult"] = self.step_code_result
        if self.step_code_error:
            payload["stepCodeError"] = self.step_code_error
        return payload


@dataclass(frozen=True)
class StepReply:
    """One parsed model reply in sequential mode."""

    step_explanation: str
    step_code: str | None
    is_final_step: bool
    focus_for_next_step: str | None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StepReply":
        explanation = coerce_str(payload.get("stepExplanation")).strip()
        if not explanation:
            raise ParseError(str(payload)[:400], "missing required field 'stepExplanation'")
        code = payload.get("stepCode")
        if code is None:
            code = payload.get("stepJsCode")
        focus = coerce_str(payload.get("focusForNextStep")).strip()
        return cls(
            step_explanation=explanation,
            step_code=coerce_str(code).strip() or None,
            is_final_step=coerce_bool(payload.get("isThisTheFinalStep")),
            focus_for_next_step=focus or None,
        )


@dataclass(frozen=True)
class SequentialSolution:
    steps: tuple[SequentialStepOutput, ...]
    final_computed_answer: Any = None
    final_summary_text: str = ""
    halted: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "steps": [step.to_dict() for step in self.steps],
            "finalSummaryText": self.final_summary_text,
        }
        if self.final_computed_answer is not None:
            payload["finalComputedAnswer"] = self.final_computed_answer
        if self.halted:
            payload["halted"] = True
        return payload


@dataclass(frozen=True)
class StandardResult:
    problem_understanding: ProblemUnderstanding
    solution_steps: tuple[SolutionStep, ...]
    final_answer: str
    verification_code: str = ""
    verification_execution: SandboxExecution | None = None
    subject: str = "general_math"
    mode: SolveMode = field(default=SolveMode.STANDARD, init=False)

    @property
    def verification_error(self) -> ExecutionError | None:
        if self.verification_execution is None:
            return None
        return self.verification_execution.as_error()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": self.mode.value,
            "subject": self.subject,
            "problemUnderstanding": self.problem_understanding.to_dict(),
            "solutionSteps": [step.to_dict() for step in self.solution_steps],
            "finalAnswer": self.final_answer,
        }
        if self.verification_code:
            payload["verificationCode"] = self.verification_code
        if self.verification_execution is not None:
            payload["verificationResult"] = self.verification_execution.result
            if self.verification_execution.error:
                payload["verificationError"] = self.verification_execution.error
        return payload


@dataclass(frozen=True)
class AdvancedResult:
    problem_understanding: ProblemUnderstanding
    sequential_solution: SequentialSolution
    subject: str = "general_math"
    mode: SolveMode = field(default=SolveMode.ADVANCED, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "subject": self.subject,
            "problemUnderstanding": self.problem_understanding.to_dict(),
            "sequentialSolution": self.sequential_solution.to_dict(),
        }


SolveResult = Union[StandardResult, AdvancedResult]


def validate_result(result: SolveResult) -> ValidationError | None:
    """Return a displayable error for an empty result instead of raising."""

    if isinstance(result, AdvancedResult):
        if not result.sequential_solution.steps:
            return ValidationError("The advanced solution did not produce any steps.")
        return None

    if not result.solution_steps:
        return ValidationError("The solution did not contain any steps.")
    if not result.final_answer.strip():
        return ValidationError("The solution did not state a final answer.")
    return None
