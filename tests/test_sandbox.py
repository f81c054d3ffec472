import unittest

from stepsolver.errors import ExecutionError
from stepsolver.sandbox import (
    EMPTY_SNIPPET_ERROR,
    NO_RETURN_STEP,
    NO_RETURN_VERIFICATION,
    SandboxExecution,
    SandboxPolicy,
    clean_snippet,
    execute_snippet,
    format_result,
    format_value,
    summarize_execution,
)


class SandboxExecutionTests(unittest.TestCase):
    def test_return_value_is_result(self) -> None:
        execution = execute_snippet("return 2+2;")

        self.assertIsNone(execution.error)
        self.assertTrue(execution.has_result)
        self.assertEqual(execution.result, 4)

    def test_raised_exception_is_reported_not_raised(self) -> None:
        execution = execute_snippet("raise ValueError('x')")

        self.assertEqual(execution.error, "x")
        self.assertEqual(execution.exception_type, "ValueError")
        self.assertIsNone(execution.result)
        self.assertFalse(execution.success)

    def test_allowed_import_works(self) -> None:
        execution = execute_snippet("from math import comb\nreturn comb(10, 3)")

        self.assertIsNone(execution.error)
        self.assertEqual(execution.result, 120)

    def test_blocked_import_is_rejected(self) -> None:
        execution = execute_snippet("import os\nreturn os.getcwd()")

        self.assertIsNotNone(execution.error)
        self.assertIn("Import blocked", execution.error)

    def test_open_is_blocked(self) -> None:
        execution = execute_snippet("return open('/etc/passwd').read()")

        self.assertIsNotNone(execution.error)
        self.assertIn("Blocked symbol", execution.error)

    def test_private_module_attributes_are_blocked(self) -> None:
        for code in (
            "import random\nreturn random._os.getcwd()",
            "import collections\nreturn collections._sys.modules['os'].getcwd()",
        ):
            with self.subTest(code=code):
                execution = execute_snippet(code)

                self.assertIsNone(execution.result)
                self.assertEqual(execution.exception_type, "CodeSafetyError")
                self.assertIn("blocked", execution.error)

        self.assertIn("Private attribute access is blocked: _os", execute_snippet("import random\nreturn random._os").error)

    def test_host_reaching_attributes_are_blocked(self) -> None:
        for code in ("import numpy\nreturn numpy.os.getcwd()", "import sympy\nreturn sympy.sys.modules"):
            with self.subTest(code=code):
                execution = execute_snippet(code)

                self.assertEqual(execution.exception_type, "CodeSafetyError")
                self.assertIn("Attribute access is blocked", execution.error)

    def test_infinite_loop_times_out(self) -> None:
        execution = execute_snippet("while True:\n    pass", SandboxPolicy(timeout_sec=1))

        self.assertIsNotNone(execution.error)
        self.assertFalse(execution.has_result)

    def test_missing_return_has_no_result(self) -> None:
        execution = execute_snippet("x = 1 + 1")

        self.assertIsNone(execution.error)
        self.assertFalse(execution.has_result)
        self.assertEqual(format_result(execution), NO_RETURN_STEP)
        self.assertEqual(format_result(execution, verification=True), NO_RETURN_VERIFICATION)

    def test_print_output_is_captured(self) -> None:
        execution = execute_snippet("print('hello')\nreturn 1")

        self.assertEqual(execution.result, 1)
        self.assertIn("hello", execution.stdout)

    def test_empty_snippet_after_cleaning(self) -> None:
        execution = execute_snippet("# only a comment\n$x^2$")

        self.assertEqual(execution.error, EMPTY_SNIPPET_ERROR)
        self.assertEqual(execution.exception_type, "EmptySnippet")

    def test_comments_and_latex_are_stripped_before_running(self) -> None:
        code = "# compute\n/* block */\nx = 3  # three\nreturn x * 2"
        execution = execute_snippet(code)

        self.assertIsNone(execution.error)
        self.assertEqual(execution.result, 6)


class SnippetCleaningTests(unittest.TestCase):
    def test_clean_snippet_removes_math_and_comments(self) -> None:
        code = "$$a+b$$\n# note\ny = 1  # inline\nreturn y"
        cleaned = clean_snippet(code)

        self.assertNotIn("$", cleaned)
        self.assertNotIn("#", cleaned)
        self.assertIn("y = 1", cleaned)
        self.assertTrue(cleaned.endswith("return y"))

    def test_hash_inside_string_survives(self) -> None:
        cleaned = clean_snippet("return '#1'")
        self.assertEqual(cleaned, "return '#1'")


class ResultFormattingTests(unittest.TestCase):
    def test_numbers(self) -> None:
        self.assertEqual(format_value(4.0), "4")
        self.assertEqual(format_value(0.171875), "0.171875")
        self.assertEqual(format_value(1 / 3), "0.3333333333")
        self.assertEqual(format_value(float("nan")), "NaN")
        self.assertEqual(format_value(float("-inf")), "-Infinity")

    def test_booleans_and_null(self) -> None:
        self.assertEqual(format_value(True), "true")
        self.assertEqual(format_value(None, has_result=True), "null")

    def test_containers_render_as_json(self) -> None:
        self.assertEqual(format_value([1, 2]), "[\n  1,\n  2\n]")

    def test_error_is_prefixed(self) -> None:
        execution = SandboxExecution(error="boom", exception_type="RuntimeError")
        self.assertEqual(format_result(execution), "Error: boom")
        self.assertTrue(summarize_execution(execution).startswith("fail"))

    def test_failure_converts_to_execution_error(self) -> None:
        failed = SandboxExecution(error="boom", exception_type="ZeroDivisionError")

        error = failed.as_error()
        self.assertIsInstance(error, ExecutionError)
        self.assertEqual(error.exception_type, "ZeroDivisionError")
        self.assertIsNone(SandboxExecution(result=1, has_result=True).as_error())


if __name__ == "__main__":
    unittest.main()
