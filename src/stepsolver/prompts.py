"""Prompt templates and subject routing."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

from .models import ProblemUnderstanding, SequentialStepOutput


@dataclass(frozen=True)
class PromptBundle:
    system: str
    user: str


@dataclass(frozen=True)
class SubjectProfile:
    id: str
    name: str
    system_context: str
    analysis_instructions: str
    solution_approach: str
    code_instructions: str
    keywords: tuple[str, ...] = ()


SUBJECTS: dict[str, SubjectProfile] = {
    "probability_statistics": SubjectProfile(
        id="probability_statistics",
        name="Probability & Statistics",
        system_context="You are an expert in probability and statistics.",
        analysis_instructions=(
            "Focus on identifying probability distributions, statistical measures, sample spaces, "
            "events, and data characteristics."
        ),
        solution_approach=(
            "Use probability theory, statistical formulas, and data analysis techniques. Consider "
            "distributions, hypothesis testing, confidence intervals, and descriptive statistics."
        ),
        code_instructions=(
            "Use exact combinatorics (math.comb, fractions.Fraction) where possible and return the "
            "probability or statistic as a number."
        ),
        keywords=(
            "probability", "statistics", "random", "distribution", "mean", "median", "mode",
            "variance", "standard deviation", "correlation", "regression", "hypothesis",
            "confidence interval", "sample", "population", "normal distribution", "binomial",
            "poisson", "coin", "dice", "toss",
        ),
    ),
    "calculus": SubjectProfile(
        id="calculus",
        name="Calculus",
        system_context="You are an expert in calculus and mathematical analysis.",
        analysis_instructions=(
            "Identify functions, variables, limits, derivatives, integrals, and their applications. "
            "Look for optimization problems, related rates, and area/volume calculations."
        ),
        solution_approach=(
            "Apply differentiation and integration techniques: the fundamental theorem of calculus, "
            "chain rule, product rule, quotient rule, and standard integration methods."
        ),
        code_instructions=(
            "Use sympy for symbolic derivatives, integrals and limits, or a numerical method when a "
            "closed form is not needed."
        ),
        keywords=(
            "derivative", "integral", "limit", "differentiate", "integrate", "optimization",
            "maximum", "minimum", "rate of change", "area under", "volume", "tangent", "slope",
            "continuous", "discontinuous",
        ),
    ),
    "linear_algebra": SubjectProfile(
        id="linear_algebra",
        name="Linear Algebra",
        system_context="You are an expert in linear algebra and matrix theory.",
        analysis_instructions=(
            "Identify vectors, matrices, linear systems, transformations, eigenvalues, and vector "
            "spaces."
        ),
        solution_approach=(
            "Use matrix operations, vector calculations, linear transformations, and eigenvalue "
            "analysis. Apply linear independence, basis, and dimension arguments."
        ),
        code_instructions=(
            "Use sympy.Matrix or numpy for determinants, eigenvalues, and solving linear systems."
        ),
        keywords=(
            "matrix", "vector", "determinant", "eigenvalue", "eigenvector", "linear transformation",
            "basis", "dimension", "span", "linear independence", "dot product", "cross product",
        ),
    ),
    "physics": SubjectProfile(
        id="physics",
        name="Physics",
        system_context=(
            "You are an expert in physics with deep understanding of physical laws and "
            "mathematical modeling."
        ),
        analysis_instructions=(
            "Identify physical quantities, units, forces, energy, motion, fields, and physical laws. "
            "Look for conservation principles and equilibrium conditions."
        ),
        solution_approach=(
            "Apply fundamental laws and conservation principles. Track units throughout the "
            "solution."
        ),
        code_instructions=(
            "Implement the physics formulas with explicit SI constants and return the quantity in "
            "the requested unit."
        ),
        keywords=(
            "force", "velocity", "acceleration", "energy", "momentum", "electric", "magnetic",
            "wave", "frequency", "mass", "newton", "joule", "watt", "volt", "ampere", "field",
            "motion", "gravity", "friction", "pressure", "temperature", "heat", "work", "power",
        ),
    ),
    "chemistry": SubjectProfile(
        id="chemistry",
        name="Chemistry",
        system_context=(
            "You are an expert in chemistry with comprehensive knowledge of chemical principles "
            "and calculations."
        ),
        analysis_instructions=(
            "Identify chemical species, reactions, stoichiometric relationships, concentrations, "
            "and equilibrium conditions."
        ),
        solution_approach=(
            "Apply stoichiometry, equilibrium concepts, and thermochemical calculations with "
            "careful unit conversions."
        ),
        code_instructions=(
            "Compute stoichiometry, concentrations, or equilibrium constants with explicit unit "
            "conversions."
        ),
        keywords=(
            "molecule", "atom", "reaction", "mole", "molarity", "concentration", "equilibrium",
            "acid", "base", "ph", "oxidation", "reduction", "catalyst", "bond", "electron",
            "proton", "neutron", "compound", "element", "solution", "solvent", "solute",
        ),
    ),
    "general_math": SubjectProfile(
        id="general_math",
        name="General Mathematics",
        system_context=(
            "You are an expert mathematician with broad knowledge across mathematical disciplines."
        ),
        analysis_instructions=(
            "Identify mathematical structures, patterns, equations, geometric relationships, and "
            "logical constraints."
        ),
        solution_approach=(
            "Apply algebraic manipulation, geometric reasoning, logical deduction, and "
            "computational methods as appropriate."
        ),
        code_instructions="Implement the calculation directly and return the final value.",
    ),
}

DEFAULT_SUBJECT = "general_math"

# Order used to break ties between equally matched subjects.
_DETECTION_ORDER = (
    "physics",
    "chemistry",
    "calculus",
    "linear_algebra",
    "probability_statistics",
)


def detect_subject(problem_text: str) -> str:
    """Keyword router for subject-specific prompting."""

    text = problem_text.lower()
    counts = {
        subject: sum(1 for keyword in SUBJECTS[subject].keywords if keyword in text)
        for subject in _DETECTION_ORDER
    }
    best = max(counts.values(), default=0)
    if best == 0:
        return DEFAULT_SUBJECT
    for subject in _DETECTION_ORDER:
        if counts[subject] == best:
            return subject
    return DEFAULT_SUBJECT


def get_subject(subject: str | None) -> SubjectProfile:
    if subject is None:
        return SUBJECTS[DEFAULT_SUBJECT]
    try:
        return SUBJECTS[subject]
    except KeyError:
        raise ValueError(f"Unknown subject: {subject!r}. Choose from {sorted(SUBJECTS)}") from None


FORMATTING_RULES = """JSON FORMAT, MARKDOWN AND LATEX (applies to content inside JSON strings):
1) Your entire response is ONE valid JSON object. No text before the opening { or after the closing }.
2) Text fields use GitHub Flavored Markdown (lists, **bold**, `inline code`).
3) Math uses KaTeX syntax: $...$ inline, $$...$$ for display formulas.
4) Inside JSON strings write newlines as \\n and LaTeX backslashes doubled (\\\\frac, \\\\sum).
5) No trailing commas.
6) State each numeric result once. Never duplicate numbers or formulas ("0.1230.123" is wrong).
"""

CODE_RULES = """PYTHON CODE RULES:
- Code is the BODY of a function with no arguments; it must end with `return <value>`.
- Only the standard math modules are available (math, fractions, itertools, statistics, sympy, numpy).
- No file, network, or system access. No comments or LaTeX inside the code string.
"""


def _image_note(has_image: bool, has_document: bool) -> str:
    notes = []
    if has_image:
        notes.append("(Note: An image is attached. Consider its content.)")
    if has_document:
        notes.append("(Note: A document is attached. Ground your answer in its content.)")
    return "\n".join(notes)


def build_understanding_prompt(
    problem_text: str,
    *,
    subject: SubjectProfile,
    has_image: bool = False,
    has_document: bool = False,
) -> PromptBundle:
    """Prompt for the first phase of both modes."""

    system = (
        f"You are a meticulous assistant specializing in {subject.name}. {subject.system_context}\n"
        "Your first task is to demonstrate a thorough understanding of the problem."
    )
    user = f"""Problem Description:
"{problem_text}"
{_image_note(has_image, has_document)}

Instructions:
1) Re-state the problem clearly in your own words (Markdown). This field is mandatory.
2) List the key information. {subject.analysis_instructions} Use a Markdown list.
3) Define the goal: what must be calculated, determined, or found.
4) Acknowledge the image if one was provided; otherwise state "No image was provided."

{FORMATTING_RULES}
Output exactly this JSON structure:
{{
  "restatedProblem": "...",
  "keyInformation": ["...", "..."],
  "problemGoal": "...",
  "imageAcknowledgement": "..."
}}
"""
    return PromptBundle(system=system, user=user)


def build_solution_prompt(
    problem_text: str,
    *,
    understanding: ProblemUnderstanding,
    subject: SubjectProfile,
    has_image: bool = False,
    has_document: bool = False,
) -> PromptBundle:
    """Prompt for the standard-mode textual solution."""

    system = (
        f"You are an expert in {subject.name}. {subject.system_context} "
        "Provide a detailed, step-by-step textual solution."
    )
    user = f"""FIRST, REVIEW THE INITIAL PROBLEM ANALYSIS:
{understanding.as_context()}
---

Main task: provide a detailed step-by-step solution in English using Markdown.
Approach: {subject.solution_approach}
Problem: {problem_text}
{_image_note(has_image, has_document)}

{FORMATTING_RULES}
Output exactly this JSON structure:
{{
  "solutionSteps": [
    {{"explanation": "Step 1 in Markdown"}},
    {{"explanation": "Step 2 in Markdown"}}
  ],
  "finalAnswer": "The final conclusive answer in Markdown"
}}
"""
    return PromptBundle(system=system, user=user)


def summarize_solution(steps: Sequence[object], final_answer: str) -> str:
    explanations = [getattr(step, "explanation", str(step)) for step in steps]
    return "\n\n---\n\n".join(explanations) + f"\n\n**Final Answer:**\n{final_answer}"


def build_verification_prompt(
    problem_text: str,
    *,
    understanding: ProblemUnderstanding,
    solution_summary: str,
    subject: SubjectProfile,
    has_image: bool = False,
    has_document: bool = False,
) -> PromptBundle:
    """Prompt asking for one block of code that recomputes the answer."""

    system = "You are an expert Python programmer verifying a textual solution computationally."
    user = f"""REVIEW THE INITIAL PROBLEM UNDERSTANDING:
{understanding.as_context()}
---

The original problem was:
"{problem_text}"
{_image_note(has_image, has_document)}

The complete textual solution was:
"{solution_summary}"

Write one self-contained block of Python that computationally solves the original problem.
{subject.code_instructions}

{CODE_RULES}
Output exactly this JSON structure and nothing else:
{{"verificationCode": "from math import comb\\nreturn comb(4, 2) / 16"}}
"""
    return PromptBundle(system=system, user=user)


def _format_history(history: Sequence[SequentialStepOutput]) -> str:
    if not history:
        return "No previous steps taken. This is the first reasoning/calculation step after initial understanding."

    chunks = []
    for index, step in enumerate(history, start=1):
        lines = [f"Step {index}:", f"Explanation (Markdown): {step.step_explanation}"]
        if step.step_code:
            lines.append(f"Code: {step.step_code}")
        if step.has_result:
            result = step.step_code_result
            if isinstance(result, (dict, list)):
                result = json.dumps(result)
            lines.append(f"Result: {result}")
        if step.step_code_error:
            lines.append(f"Error: {step.step_code_error}")
        chunks.append("\n".join(lines))
    return "\n---\n".join(chunks)


def build_sequential_step_prompt(
    problem_text: str,
    *,
    understanding: ProblemUnderstanding,
    history: Sequence[SequentialStepOutput],
    focus: str,
    subject: SubjectProfile,
    has_image: bool = False,
    has_document: bool = False,
) -> PromptBundle:
    """Prompt for one iteration of the advanced (sequential) mode."""

    system = (
        f"You are an AI assistant performing sequential, step-by-step problem solving in "
        f"{subject.name}. {subject.system_context}"
    )
    user = f"""1) Original Problem: "{problem_text}"
{_image_note(has_image, has_document)}

2) Initial Understanding of the Problem:
{understanding.as_context()}

3) History of Previous Steps:
{_format_history(history)}

4) Current Focus for THIS Step: "{focus}"

Perform only the reasoning or calculation required by the current focus.

{FORMATTING_RULES}
{CODE_RULES}
Output exactly this JSON structure:
{{
  "stepExplanation": "Markdown reasoning for this step. If this is the final step, state the overall final answer.",
  "stepCode": "OPTIONAL Python function body for this step's calculation, ending with return. Empty string if none.",
  "isThisTheFinalStep": false,
  "focusForNextStep": "Plain-text objective of the very next step, or a concluding remark if final."
}}
The return value of stepCode in the final step is taken as the final computed answer.
"""
    return PromptBundle(system=system, user=user)
