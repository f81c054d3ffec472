import json
import unittest

from stepsolver.config import SolverConfig
from stepsolver.errors import ConfigError, ParseError
from stepsolver.orchestrator import SolveRequest
from stepsolver.progress import Phase, RecordingProgress
from stepsolver.prompts import get_subject
from stepsolver.sequential import CONCLUDE_FOCUS, DEFAULT_FOCUS, SequentialStepEngine


def _understanding(goal: str = "Find x.") -> str:
    return json.dumps(
        {
            "restatedProblem": "Solve 2x + 3 = 11 for x.",
            "keyInformation": ["linear equation"],
            "problemGoal": goal,
            "imageAcknowledgement": "No image was provided.",
        }
    )


def _step(explanation: str, *, code: str = "", final: bool = False, focus: str = "Keep going.") -> str:
    return json.dumps(
        {
            "stepExplanation": explanation,
            "stepCode": code,
            "isThisTheFinalStep": final,
            "focusForNextStep": focus,
        }
    )


class _ScriptedClient:
    """Replays ``responses`` in order, then repeats ``default`` forever."""

    def __init__(self, responses, default=None):
        self._responses = list(responses)
        self._default = default
        self.prompts = []

    def generate(self, *, system_prompt, user_prompt, temperature, max_tokens, image=None, document=None):
        self.prompts.append(user_prompt)
        out = self._responses.pop(0) if self._responses else self._default
        if isinstance(out, Exception):
            raise out
        return out


def _request() -> SolveRequest:
    return SolveRequest(problem_text="Solve 2x + 3 = 11.", subject=get_subject("general_math"))


class SequentialStepEngineTests(unittest.TestCase):
    def test_final_step_return_value_is_final_answer(self) -> None:
        client = _ScriptedClient(
            [
                _understanding(),
                _step("Subtract 3: $2x = 8$.", code="return 11 - 3", focus="Divide by 2."),
                _step("Divide by 2, so $x = 4$.", code="return (11 - 3) / 2", final=True),
            ]
        )

        result = SequentialStepEngine(client).solve(_request())
        solution = result.sequential_solution

        self.assertEqual(len(solution.steps), 2)
        self.assertEqual(solution.steps[0].step_code_result, 8)
        self.assertEqual(solution.final_computed_answer, 4)
        self.assertEqual(solution.final_summary_text, "Divide by 2, so $x = 4$.")
        self.assertFalse(solution.halted)
        self.assertEqual(result.mode.value, "advanced")

    def test_loop_halts_at_default_cap_with_one_extra_entry(self) -> None:
        client = _ScriptedClient([_understanding()], default=_step("Still thinking."))

        result = SequentialStepEngine(client).solve(_request())
        solution = result.sequential_solution

        self.assertEqual(len(client.prompts), 11)
        self.assertEqual(len(solution.steps), 11)
        self.assertTrue(solution.halted)
        self.assertIn("exceeded maximum sequential steps (10)", solution.steps[-1].step_explanation)
        self.assertEqual(solution.final_summary_text, solution.steps[-1].step_explanation)
        self.assertIsNone(solution.final_computed_answer)

    def test_cap_is_configurable(self) -> None:
        client = _ScriptedClient([_understanding()], default=_step("Still thinking."))
        config = SolverConfig(max_sequential_steps=3)

        solution = SequentialStepEngine(client, config=config).solve(_request()).sequential_solution

        self.assertEqual(len(solution.steps), 4)
        self.assertTrue(solution.halted)
        self.assertIn("(3)", solution.steps[-1].step_explanation)

    def test_unparseable_step_ends_loop_with_error_entry(self) -> None:
        client = _ScriptedClient(
            [
                _understanding(),
                _step("First step.", focus="Next."),
                "no json here",
            ]
        )

        solution = SequentialStepEngine(client).solve(_request()).sequential_solution

        self.assertEqual(len(solution.steps), 2)
        self.assertFalse(solution.halted)
        self.assertIn("Error processing AI response", solution.steps[-1].step_explanation)
        self.assertIn('focus: "Next."', solution.steps[-1].step_explanation)
        self.assertEqual(len(client.prompts), 3)

    def test_config_error_in_step_propagates(self) -> None:
        client = _ScriptedClient([_understanding(), ConfigError("no key")])

        with self.assertRaises(ConfigError):
            SequentialStepEngine(client).solve(_request())

    def test_understanding_failure_uses_advanced_prefix(self) -> None:
        client = _ScriptedClient(["garbage"])

        with self.assertRaises(ParseError) as ctx:
            SequentialStepEngine(client).solve(_request())

        self.assertTrue(str(ctx.exception).startswith("Error understanding problem (advanced):"))

    def test_focus_falls_back_to_defaults(self) -> None:
        client = _ScriptedClient(
            [
                _understanding(goal=""),
                _step("Start.", focus=""),
                _step("Done, $x = 4$.", final=True),
            ]
        )

        SequentialStepEngine(client).solve(_request())

        self.assertIn(f'Current Focus for THIS Step: "{DEFAULT_FOCUS}"', client.prompts[1])
        self.assertIn(f'Current Focus for THIS Step: "{CONCLUDE_FOCUS}"', client.prompts[2])

    def test_step_code_errors_are_recorded_and_loop_continues(self) -> None:
        client = _ScriptedClient(
            [
                _understanding(),
                _step("Try something.", code="raise ValueError('bad input')", focus="Recover."),
                _step("Recovered, $x = 4$.", code="return 4", final=True),
            ]
        )

        solution = SequentialStepEngine(client).solve(_request()).sequential_solution

        self.assertEqual(solution.steps[0].step_code_error, "bad input")
        self.assertFalse(solution.steps[0].has_result)
        self.assertEqual(solution.final_computed_answer, 4)

    def test_history_is_replayed_into_later_prompts(self) -> None:
        client = _ScriptedClient(
            [
                _understanding(),
                _step("Subtract 3.", code="return 8", focus="Divide."),
                _step("Divide, $x = 4$.", final=True),
            ]
        )

        SequentialStepEngine(client).solve(_request())

        self.assertIn("No previous steps taken", client.prompts[1])
        self.assertIn("Step 1:", client.prompts[2])
        self.assertIn("Result: 8", client.prompts[2])

    def test_progress_reports_each_step(self) -> None:
        client = _ScriptedClient(
            [
                _understanding(),
                _step("One.", focus="Two."),
                _step("Two.", final=True),
            ]
        )
        progress = RecordingProgress()

        SequentialStepEngine(client, progress=progress).solve(_request())

        step_events = [e for e in progress.events if e is not None and e.phase == Phase.SEQUENTIAL_SOLVING]
        self.assertEqual([e.current_step for e in step_events], [1, 2])
        self.assertEqual(step_events[0].step_description, 'Thinking about: "Find x."')
        self.assertEqual(step_events[1].step_description, 'Thinking about: "Two."')
        self.assertIsNone(progress.events[-1])


if __name__ == "__main__":
    unittest.main()
