"""Dataframe-level utilities for batch solving."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from .errors import ConfigError
from .models import AdvancedResult, SolveMode, SolveResult, validate_result
from .solver import ProblemSolver

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["id", "mode", "subject", "final_answer", "error"]


def _final_answer(result: SolveResult) -> str:
    if isinstance(result, AdvancedResult):
        solution = result.sequential_solution
        if solution.final_computed_answer is not None:
            return json.dumps(solution.final_computed_answer)
        return solution.final_summary_text
    return result.final_answer


def run_batch(
    solver: ProblemSolver,
    problems_df: pd.DataFrame,
    *,
    mode: SolveMode | str = SolveMode.STANDARD,
    id_col: str = "id",
    problem_col: str = "problem",
    verbose: bool = True,
) -> tuple[pd.DataFrame, list[dict[str, Any]]]:
    """Run the solver across a dataframe of problems.

    A failing problem is recorded with its error and the batch moves on;
    configuration errors stop the batch since every later problem would fail
    the same way.
    """

    required = {id_col, problem_col}
    missing = required - set(problems_df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    mode = SolveMode(mode)
    rows: list[dict[str, Any]] = []
    traces: list[dict[str, Any]] = []

    total = len(problems_df)
    for idx, row in enumerate(problems_df.itertuples(index=False), start=1):
        problem_id = getattr(row, id_col)
        problem_text = getattr(row, problem_col)
        if pd.isna(problem_text):
            problem_text = ""

        try:
            result = solver.solve(str(problem_text), mode=mode)
        except ConfigError:
            raise
        except Exception as exc:
            logger.error("Problem %s failed: %s", problem_id, exc)
            rows.append({"id": problem_id, "mode": mode.value, "subject": "", "final_answer": "", "error": str(exc)})
            traces.append({"id": problem_id, "error": str(exc)})
            continue

        issue = validate_result(result)
        rows.append(
            {
                "id": problem_id,
                "mode": mode.value,
                "subject": result.subject,
                "final_answer": _final_answer(result),
                "error": str(issue) if issue else "",
            }
        )
        traces.append({"id": problem_id, "result": result.to_dict()})

        if verbose:
            print(f"[{idx:02d}/{total:02d}] id={problem_id} mode={mode.value} subject={result.subject}")

    return pd.DataFrame(rows, columns=RESULT_COLUMNS), traces


def save_results(results_df: pd.DataFrame, output_path: str | Path) -> Path:
    """Save the batch summary with a fixed column order."""

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    if list(results_df.columns) != RESULT_COLUMNS:
        results_df = results_df.reindex(columns=RESULT_COLUMNS)

    results_df.to_csv(output, index=False)
    return output


def save_traces(traces: list[dict[str, Any]], output_path: str | Path) -> Path:
    """Persist full solve results for error analysis."""

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(traces, indent=2, default=str), encoding="utf-8")
    return output
