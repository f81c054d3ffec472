"""LLM-backed step-by-step problem solver."""

from .client import OpenAICompatChatClient
from .config import SolverConfig
from .errors import APIError, ConfigError, ExecutionError, ParseError, SolverError, ValidationError
from .models import AdvancedResult, SolveMode, SolveResult, StandardResult
from .progress import Phase, ProgressChannel, ProgressEvent
from .solver import ProblemSolver

__all__ = [
    "OpenAICompatChatClient",
    "SolverConfig",
    "ProblemSolver",
    "SolveMode",
    "SolveResult",
    "StandardResult",
    "AdvancedResult",
    "Phase",
    "ProgressChannel",
    "ProgressEvent",
    "SolverError",
    "ConfigError",
    "ParseError",
    "APIError",
    "ExecutionError",
    "ValidationError",
]
