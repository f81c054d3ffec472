"""Standard-mode pipeline: understand, solve, verify."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .client import ChatClient
from .config import SolverConfig
from .documents import DocumentHandle
from .errors import APIError, ConfigError, SolverError
from .models import ProblemUnderstanding, SolutionStep, StandardResult, parse_solution_steps
from .progress import NullProgress, Phase, ProgressEvent, ProgressReporter
from .prompts import (
    PromptBundle,
    SubjectProfile,
    build_solution_prompt,
    build_understanding_prompt,
    build_verification_prompt,
    summarize_solution,
)
from .sandbox import SandboxPolicy, execute_snippet, summarize_execution
from .sanitizer import coerce_str, sanitize_and_parse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolveRequest:
    problem_text: str
    subject: SubjectProfile
    image: bytes | None = None
    document: DocumentHandle | None = None

    @property
    def has_image(self) -> bool:
        return self.image is not None

    @property
    def has_document(self) -> bool:
        return self.document is not None


class PromptOrchestrator:
    """Runs the three-phase standard pipeline and shares its primitives."""

    understanding_error_prefix = "Error understanding problem"

    def __init__(
        self,
        client: ChatClient,
        *,
        config: SolverConfig | None = None,
        sandbox_policy: SandboxPolicy | None = None,
        progress: ProgressReporter | None = None,
    ) -> None:
        self.client = client
        self.config = config or SolverConfig()
        self.sandbox_policy = sandbox_policy or SandboxPolicy()
        self.progress = progress or NullProgress()

    def _publish(self, phase: Phase, description: str, *, step: int = 0) -> None:
        self.progress.publish(
            ProgressEvent(current_step=step, total_steps=0, step_description=description, phase=phase)
        )

    def call_json(self, prompt: PromptBundle, request: SolveRequest, *, max_tokens: int) -> dict[str, Any]:
        """One model call followed by JSON recovery."""

        try:
            raw = self.client.generate(
                system_prompt=prompt.system,
                user_prompt=prompt.user,
                temperature=self.config.temperature,
                max_tokens=max_tokens,
                image=request.image,
                document=request.document,
            )
        except SolverError:
            raise
        except Exception as exc:
            raise APIError(f"Model call failed: {exc}") from exc
        return sanitize_and_parse(raw)

    def understand(self, request: SolveRequest) -> ProblemUnderstanding:
        """Phase shared by both modes. Failures abort the solve."""

        self._publish(Phase.UNDERSTANDING_PROBLEM, "Analyzing problem...")
        prompt = build_understanding_prompt(
            request.problem_text,
            subject=request.subject,
            has_image=request.has_image,
            has_document=request.has_document,
        )
        try:
            payload = self.call_json(prompt, request, max_tokens=self.config.max_tokens)
            return ProblemUnderstanding.from_payload(payload)
        except SolverError as exc:
            raise exc.with_context(self.understanding_error_prefix) from exc

    def solve(self, request: SolveRequest) -> StandardResult:
        try:
            result = self._run(request)
        finally:
            self.progress.publish(None)
        return result

    def _run(self, request: SolveRequest) -> StandardResult:
        understanding = self.understand(request)

        self._publish(Phase.GENERATING_TEXTUAL_SOLUTION, "Generating textual solution...")
        prompt = build_solution_prompt(
            request.problem_text,
            understanding=understanding,
            subject=request.subject,
            has_image=request.has_image,
            has_document=request.has_document,
        )
        try:
            payload = self.call_json(prompt, request, max_tokens=self.config.max_tokens)
        except SolverError as exc:
            raise exc.with_context("Error generating textual solution") from exc

        steps = parse_solution_steps(payload.get("solutionSteps"))
        final_answer = coerce_str(payload.get("finalAnswer"))

        self._publish(Phase.GENERATING_VERIFICATION_CODE, "Generating verification code...")
        verification_code = self._generate_verification_code(request, understanding, steps, final_answer)

        execution = None
        if verification_code and self.config.run_verification_code:
            execution = execute_snippet(verification_code, policy=self.sandbox_policy)
            logger.info("Verification code run: %s", summarize_execution(execution))

        return StandardResult(
            problem_understanding=understanding,
            solution_steps=tuple(steps),
            final_answer=final_answer,
            verification_code=verification_code,
            verification_execution=execution,
            subject=request.subject.id,
        )

    def _generate_verification_code(
        self,
        request: SolveRequest,
        understanding: ProblemUnderstanding,
        steps: list[SolutionStep],
        final_answer: str,
    ) -> str:
        prompt = build_verification_prompt(
            request.problem_text,
            understanding=understanding,
            solution_summary=summarize_solution(steps, final_answer),
            subject=request.subject,
            has_image=request.has_image,
            has_document=request.has_document,
        )
        try:
            payload = self.call_json(prompt, request, max_tokens=self.config.verification_max_tokens)
        except ConfigError:
            raise
        except SolverError as exc:
            logger.warning("Verification code generation failed; continuing without it: %s", exc)
            return ""
        return coerce_str(payload.get("verificationCode")).strip()
