import json
import unittest

from stepsolver.config import SolverConfig
from stepsolver.errors import APIError, ConfigError, ParseError
from stepsolver.orchestrator import PromptOrchestrator, SolveRequest
from stepsolver.progress import Phase, RecordingProgress
from stepsolver.prompts import get_subject

COIN_PROBLEM = "A fair coin is tossed 10 times. What is the probability of getting at least 7 heads?"

UNDERSTANDING = json.dumps(
    {
        "restatedProblem": "Find P(at least 7 heads in 10 fair tosses).",
        "keyInformation": ["10 independent tosses", "fair coin"],
        "problemGoal": "Compute the probability.",
        "imageAcknowledgement": "No image was provided.",
    }
)
SOLUTION = json.dumps(
    {
        "solutionSteps": [
            {"explanation": "Count outcomes with $k \\ge 7$ heads: $\\sum_{k=7}^{10} \\binom{10}{k} = 176$."},
            {"explanation": "Divide by $2^{10} = 1024$."},
        ],
        "finalAnswer": "$176/1024 = 0.171875$",
    }
)
VERIFICATION = json.dumps(
    {"verificationCode": "from math import comb\nreturn sum(comb(10,k) for k in range(7,11))/2**10"}
)


class _ScriptedClient:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def generate(self, *, system_prompt, user_prompt, temperature, max_tokens, image=None, document=None):
        self.calls.append({"system": system_prompt, "user": user_prompt, "image": image, "document": document})
        out = self._responses.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def _request(problem: str = COIN_PROBLEM, **kwargs) -> SolveRequest:
    return SolveRequest(problem_text=problem, subject=get_subject("probability_statistics"), **kwargs)


class PromptOrchestratorTests(unittest.TestCase):
    def test_coin_toss_end_to_end_runs_verification_code(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, "```json\n" + SOLUTION + "\n```", VERIFICATION])
        progress = RecordingProgress()

        result = PromptOrchestrator(client, progress=progress).solve(_request())

        self.assertEqual(len(client.calls), 3)
        self.assertEqual(len(result.solution_steps), 2)
        self.assertIn("0.171875", result.final_answer)
        self.assertEqual(result.subject, "probability_statistics")
        self.assertIsNotNone(result.verification_execution)
        self.assertIsNone(result.verification_execution.error)
        value = result.verification_execution.result
        self.assertGreater(value, 0)
        self.assertLess(value, 1)
        self.assertAlmostEqual(value, 0.171875)

    def test_phases_are_published_in_order_and_end_idle(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, VERIFICATION])
        progress = RecordingProgress()

        PromptOrchestrator(client, progress=progress, config=SolverConfig(run_verification_code=False)).solve(
            _request()
        )

        self.assertEqual(
            progress.phases,
            [
                Phase.UNDERSTANDING_PROBLEM,
                Phase.GENERATING_TEXTUAL_SOLUTION,
                Phase.GENERATING_VERIFICATION_CODE,
            ],
        )
        self.assertIsNone(progress.events[-1])

    def test_skipping_verification_run_keeps_code(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, VERIFICATION])

        result = PromptOrchestrator(client, config=SolverConfig(run_verification_code=False)).solve(_request())

        self.assertIn("comb", result.verification_code)
        self.assertIsNone(result.verification_execution)

    def test_understanding_failure_aborts_with_prefixed_parse_error(self) -> None:
        client = _ScriptedClient(["I am not JSON"])
        progress = RecordingProgress()

        with self.assertRaises(ParseError) as ctx:
            PromptOrchestrator(client, progress=progress).solve(_request())

        self.assertTrue(str(ctx.exception).startswith("Error understanding problem: Could not parse response from AI"))
        self.assertEqual(len(client.calls), 1)
        self.assertIsNone(progress.events[-1])

    def test_missing_restated_problem_is_a_parse_failure(self) -> None:
        client = _ScriptedClient([json.dumps({"keyInformation": []})])

        with self.assertRaises(ParseError):
            PromptOrchestrator(client).solve(_request())

    def test_solution_failure_is_prefixed(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, APIError("upstream 500", status_code=500)])

        with self.assertRaises(APIError) as ctx:
            PromptOrchestrator(client).solve(_request())

        self.assertTrue(str(ctx.exception).startswith("Error generating textual solution"))
        self.assertEqual(ctx.exception.status_code, 500)

    def test_unexpected_client_exception_becomes_api_error(self) -> None:
        client = _ScriptedClient([ConnectionError("reset by peer")])

        with self.assertRaises(APIError) as ctx:
            PromptOrchestrator(client).solve(_request())

        self.assertIn("reset by peer", str(ctx.exception))

    def test_verification_failure_is_absorbed(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, "not json at all"])

        result = PromptOrchestrator(client).solve(_request())

        self.assertEqual(result.verification_code, "")
        self.assertIsNone(result.verification_execution)
        self.assertIn("0.171875", result.final_answer)

    def test_config_error_during_verification_propagates(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, ConfigError("no key")])

        with self.assertRaises(ConfigError):
            PromptOrchestrator(client).solve(_request())

    def test_understanding_is_replayed_into_later_prompts(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, VERIFICATION])

        PromptOrchestrator(client, config=SolverConfig(run_verification_code=False)).solve(_request())

        for call in client.calls[1:]:
            self.assertIn("Find P(at least 7 heads in 10 fair tosses).", call["user"])

    def test_attachments_are_forwarded_to_every_call(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, VERIFICATION])

        PromptOrchestrator(client, config=SolverConfig(run_verification_code=False)).solve(
            _request(image=b"\x89PNG\r\n\x1a\nfake")
        )

        self.assertTrue(all(call["image"] is not None for call in client.calls))
        self.assertIn("An image is attached", client.calls[0]["user"])

    def test_result_serializes_to_wire_names(self) -> None:
        client = _ScriptedClient([UNDERSTANDING, SOLUTION, VERIFICATION])

        payload = PromptOrchestrator(client).solve(_request()).to_dict()

        self.assertEqual(payload["mode"], "standard")
        self.assertIn("restatedProblem", payload["problemUnderstanding"])
        self.assertEqual(len(payload["solutionSteps"]), 2)
        self.assertAlmostEqual(payload["verificationResult"], 0.171875)


if __name__ == "__main__":
    unittest.main()
