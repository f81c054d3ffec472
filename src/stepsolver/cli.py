"""Command-line interface for solving problems and running snippets."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from .config import MODEL_CHOICES, SolverConfig, load_dotenv_if_present, load_settings
from .errors import SolverError
from .models import SolveMode, StandardResult, validate_result
from .pipeline import run_batch, save_results, save_traces
from .progress import ProgressEvent
from .prompts import SUBJECTS
from .sandbox import SandboxPolicy, execute_snippet, format_result
from .solver import ProblemSolver

logger = logging.getLogger(__name__)


def _add_solver_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--model",
        default=None,
        help=f"Model identifier. Known choices: {', '.join(MODEL_CHOICES)}.",
    )
    parser.add_argument("--base-url", default=None)
    parser.add_argument("--api-key", default=None)
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in SolveMode],
        default=SolveMode.STANDARD.value,
        help="standard: understand/solve/verify. advanced: bounded sequential steps.",
    )
    parser.add_argument(
        "--orchestrator",
        choices=["classic", "langgraph"],
        default="classic",
        help="Runtime for advanced mode: handcrafted loop or LangGraph state machine.",
    )
    parser.add_argument("--subject", choices=sorted(SUBJECTS), default=None)
    parser.add_argument("--temperature", type=float, default=0.2)
    parser.add_argument("--max-tokens", type=int, default=4096, help="Token limit for understanding and solution calls.")
    parser.add_argument("--step-max-tokens", type=int, default=2048, help="Token limit for each sequential step.")
    parser.add_argument(
        "--verification-max-tokens",
        type=int,
        default=1536,
        help="Token limit for the verification code call.",
    )
    parser.add_argument("--max-sequential-steps", type=int, default=None)
    parser.add_argument("--parse-retries", type=int, default=1)
    parser.add_argument("--no-verification-run", action="store_true")
    parser.add_argument("--show-progress", action="store_true")


def _config_from_args(args: argparse.Namespace, *, default_max_steps: int) -> SolverConfig:
    max_steps = args.max_sequential_steps or default_max_steps
    return SolverConfig(
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        step_max_tokens=args.step_max_tokens,
        verification_max_tokens=args.verification_max_tokens,
        max_sequential_steps=max(1, max_steps),
        parse_retries=max(0, args.parse_retries),
        run_verification_code=not args.no_verification_run,
        orchestrator=args.orchestrator,
    )


def _build_solver_from_args(args: argparse.Namespace) -> ProblemSolver:
    settings = load_settings(api_key=args.api_key, base_url=args.base_url, model=args.model)
    config = _config_from_args(args, default_max_steps=settings.max_sequential_steps)
    solver = ProblemSolver.from_settings(settings, config=config)
    if args.show_progress:
        solver.progress.subscribe(_print_progress)
    return solver


def _print_progress(event: ProgressEvent | None) -> None:
    if event is None:
        print("[done]", file=sys.stderr)
        return
    step = f" step {event.current_step}" if event.current_step else ""
    print(f"[{event.phase.value}{step}] {event.step_description}", file=sys.stderr)


def cmd_solve(args: argparse.Namespace) -> None:
    if args.problem_file:
        problem_text = Path(args.problem_file).read_text(encoding="utf-8")
    else:
        problem_text = args.problem or ""

    image = Path(args.image).read_bytes() if args.image else None

    solver = _build_solver_from_args(args)
    result = solver.solve(
        problem_text,
        image=image,
        document=args.document,
        mode=args.mode,
        subject=args.subject,
    )

    print(json.dumps(result.to_dict(), indent=2, default=str))
    issue = validate_result(result)
    if issue is not None:
        print(f"Warning: {issue}", file=sys.stderr)
    if isinstance(result, StandardResult) and result.verification_error is not None:
        print(f"Warning: verification code failed: {result.verification_error}", file=sys.stderr)


def cmd_batch(args: argparse.Namespace) -> None:
    input_path = Path(args.input_csv)
    if not input_path.exists():
        raise FileNotFoundError(f"Input CSV not found: {input_path}")

    problems_df = pd.read_csv(input_path)
    solver = _build_solver_from_args(args)
    results_df, traces = run_batch(solver, problems_df, mode=args.mode, verbose=not args.quiet)

    out = save_results(results_df, args.output_csv)
    print(f"Saved results file: {out}")
    if args.traces_json:
        traces_out = save_traces(traces, args.traces_json)
        print(f"Saved solve traces: {traces_out}")


def cmd_run_snippet(args: argparse.Namespace) -> None:
    if args.file:
        code = Path(args.file).read_text(encoding="utf-8")
    else:
        code = args.code or ""

    execution = execute_snippet(code, policy=SandboxPolicy(timeout_sec=args.timeout_sec))
    print(format_result(execution, verification=args.verification))
    if execution.stdout.strip():
        print("--- stdout ---")
        print(execution.stdout.rstrip())
    failure = execution.as_error()
    if failure is not None:
        logger.info("Snippet failed with %s", failure.exception_type)
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stepsolver", description=__doc__)
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    solve = sub.add_parser("solve", help="Solve a single problem and print the JSON result.")
    source = solve.add_mutually_exclusive_group()
    source.add_argument("problem", nargs="?", default=None)
    source.add_argument("--problem-file", default=None)
    solve.add_argument("--image", default=None, help="Path to an image of the problem.")
    solve.add_argument("--document", default=None, help="Path to a document to ground the solution.")
    _add_solver_args(solve)
    solve.set_defaults(func=cmd_solve)

    batch = sub.add_parser("batch", help="Solve every row of a CSV with id,problem columns.")
    batch.add_argument("--input-csv", required=True)
    batch.add_argument("--output-csv", default="outputs/results.csv")
    batch.add_argument("--traces-json", default=None)
    batch.add_argument("--quiet", action="store_true")
    _add_solver_args(batch)
    batch.set_defaults(func=cmd_batch)

    snippet = sub.add_parser("run-snippet", help="Run a code snippet in the sandbox.")
    snippet_source = snippet.add_mutually_exclusive_group(required=True)
    snippet_source.add_argument("--code", default=None)
    snippet_source.add_argument("--file", default=None)
    snippet.add_argument("--timeout-sec", type=int, default=6)
    snippet.add_argument("--verification", action="store_true")
    snippet.set_defaults(func=cmd_run_snippet)

    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv_if_present()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except SolverError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
