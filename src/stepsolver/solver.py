"""Entry point that routes a problem to the right pipeline."""

from __future__ import annotations

import logging
from pathlib import Path

from .client import ChatClient, OpenAICompatChatClient
from .config import Settings, SolverConfig, load_settings
from .documents import DocumentHandle, DocumentStore, OpenAICompatFileStore
from .errors import ConfigError, ValidationError
from .models import SolveMode, SolveResult
from .orchestrator import PromptOrchestrator, SolveRequest
from .progress import ProgressChannel
from .prompts import detect_subject, get_subject
from .retry import with_parse_retry
from .sandbox import SandboxPolicy
from .sequential import SequentialStepEngine

logger = logging.getLogger(__name__)


class ProblemSolver:
    """Solve problems in standard or advanced mode.

    Progress is published on ``self.progress``; subscribe to it to observe
    phases and sequential steps. Every ``solve`` call ends with a ``None``
    event, whether it succeeds or fails.
    """

    def __init__(
        self,
        client: ChatClient,
        *,
        config: SolverConfig | None = None,
        sandbox_policy: SandboxPolicy | None = None,
        document_store: DocumentStore | None = None,
        progress: ProgressChannel | None = None,
    ) -> None:
        self.client = client
        self.config = config or SolverConfig()
        self.sandbox_policy = sandbox_policy or SandboxPolicy()
        self.document_store = document_store
        self.progress = progress or ProgressChannel()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        config: SolverConfig | None = None,
        progress: ProgressChannel | None = None,
    ) -> "ProblemSolver":
        """Build a solver against an OpenAI-compatible backend."""

        settings = settings or load_settings()
        client = OpenAICompatChatClient(
            base_url=settings.base_url,
            model=settings.model,
            api_key=settings.api_key,
            timeout_sec=settings.timeout_sec,
        )
        store = OpenAICompatFileStore(base_url=settings.base_url, api_key=settings.api_key)
        config = config or SolverConfig(max_sequential_steps=settings.max_sequential_steps)
        return cls(client, config=config, document_store=store, progress=progress)

    def _engine(self, mode: SolveMode) -> PromptOrchestrator:
        kwargs = {"config": self.config, "sandbox_policy": self.sandbox_policy, "progress": self.progress}
        if mode == SolveMode.STANDARD:
            return PromptOrchestrator(self.client, **kwargs)
        if self.config.orchestrator == "langgraph":
            from .langgraph_engine import LangGraphSequentialEngine

            return LangGraphSequentialEngine(self.client, **kwargs)
        return SequentialStepEngine(self.client, **kwargs)

    def solve(
        self,
        problem_text: str,
        *,
        image: bytes | None = None,
        document: str | Path | None = None,
        mode: SolveMode | str = SolveMode.STANDARD,
        subject: str | None = None,
    ) -> SolveResult:
        handle: DocumentHandle | None = None
        engine_started = False
        try:
            mode = SolveMode(mode)
            problem_text = (problem_text or "").strip()
            if not problem_text and image is None and document is None:
                raise ValidationError("Please enter a problem description or attach an image or document.")
            if not problem_text:
                problem_text = "Solve the problem shown in the attachment."

            profile = get_subject(subject or detect_subject(problem_text))
            engine = self._engine(mode)
            handle = self._upload(document)

            request = SolveRequest(problem_text=problem_text, subject=profile, image=image, document=handle)
            logger.info("Solving in %s mode (subject=%s)", mode.value, profile.id)
            engine_started = True
            return with_parse_retry(lambda: engine.solve(request), retries=self.config.parse_retries)
        finally:
            self._release(handle)
            if not engine_started:
                # Engines publish their own terminal event.
                self.progress.publish(None)

    def _upload(self, document: str | Path | None) -> DocumentHandle | None:
        if document is None:
            return None
        if self.document_store is None:
            raise ConfigError("A document was supplied but no document store is configured.")
        return self.document_store.upload(document)

    def _release(self, handle: DocumentHandle | None) -> None:
        if handle is None or self.document_store is None:
            return
        try:
            self.document_store.delete(handle)
        except Exception:
            logger.warning("Could not delete uploaded document %s", handle.file_id, exc_info=True)
