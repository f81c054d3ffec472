"""LangGraph-based orchestration of the advanced (sequential) mode."""

from __future__ import annotations

from typing import Any, TypedDict

try:
    from langgraph.graph import END, START, StateGraph
except Exception as exc:  # pragma: no cover - exercised in environments without langgraph
    END = START = StateGraph = None
    _LANGGRAPH_IMPORT_ERROR: Exception | None = exc
else:  # pragma: no cover - import has no behavior to test directly
    _LANGGRAPH_IMPORT_ERROR = None

from .client import ChatClient
from .config import SolverConfig
from .models import AdvancedResult, ProblemUnderstanding
from .orchestrator import SolveRequest
from .progress import ProgressReporter
from .sandbox import SandboxPolicy
from .sequential import SequentialStepEngine, StepLoopState


class LangGraphUnavailableError(RuntimeError):
    """Raised when the user selects LangGraph orchestration but dependency is missing."""


def is_langgraph_available() -> bool:
    """Return whether LangGraph runtime is importable."""

    return _LANGGRAPH_IMPORT_ERROR is None


class _GraphState(TypedDict, total=False):
    request: SolveRequest
    understanding: ProblemUnderstanding
    loop: StepLoopState


class LangGraphSequentialEngine(SequentialStepEngine):
    """Sequential engine implemented as a LangGraph state machine.

    Graph: ``understand -> step -> (step | finish) -> END``. The nodes reuse the
    loop primitives of :class:`SequentialStepEngine`, so both engines produce
    identical histories for identical model replies.
    """

    def __init__(
        self,
        client: ChatClient,
        *,
        config: SolverConfig | None = None,
        sandbox_policy: SandboxPolicy | None = None,
        progress: ProgressReporter | None = None,
    ) -> None:
        if not is_langgraph_available():
            raise LangGraphUnavailableError(
                "LangGraph is not installed. Install with `pip install 'stepsolver[agentic]'`."
            ) from _LANGGRAPH_IMPORT_ERROR

        super().__init__(client, config=config, sandbox_policy=sandbox_policy, progress=progress)
        self._graph = self._build_graph()

    def solve(self, request: SolveRequest) -> AdvancedResult:  # type: ignore[override]
        try:
            # Each node runs one model call at most; the cap bounds the step count.
            final_state = self._graph.invoke(
                {"request": request},
                config={"recursion_limit": self.max_steps * 2 + 10},
            )
        finally:
            self.progress.publish(None)
        return self.build_result(request, final_state["understanding"], final_state["loop"])

    def _build_graph(self):
        builder = StateGraph(dict)
        builder.add_node("understand", self._node_understand)
        builder.add_node("step", self._node_step)
        builder.add_node("finish", self._node_finish)

        builder.add_edge(START, "understand")
        builder.add_edge("understand", "step")
        builder.add_conditional_edges(
            "step",
            self._route_after_step,
            {
                "step": "step",
                "finish": "finish",
            },
        )
        builder.add_edge("finish", END)
        return builder.compile()

    def _node_understand(self, state: _GraphState) -> dict[str, Any]:
        understanding = self.understand(state["request"])
        return {
            "request": state["request"],
            "understanding": understanding,
            "loop": self.start_loop(understanding),
        }

    def _node_step(self, state: _GraphState) -> dict[str, Any]:
        loop = state["loop"]
        self.run_iteration(state["request"], state["understanding"], loop)
        next_state = dict(state)
        next_state["loop"] = loop
        return next_state

    def _node_finish(self, state: _GraphState) -> dict[str, Any]:
        loop = state["loop"]
        self.finish_loop(loop)
        next_state = dict(state)
        next_state["loop"] = loop
        return next_state

    def _route_after_step(self, state: _GraphState) -> str:
        loop = state["loop"]
        if loop.done or loop.counter >= self.max_steps:
            return "finish"
        return "step"
