import unittest

from stepsolver.progress import Phase, ProgressChannel, ProgressEvent, RecordingProgress


class ProgressChannelTests(unittest.TestCase):
    def test_subscribers_receive_events_until_unsubscribed(self) -> None:
        channel = ProgressChannel()
        seen = []
        unsubscribe = channel.subscribe(seen.append)

        event = ProgressEvent(1, 0, "Analyzing problem...", Phase.UNDERSTANDING_PROBLEM)
        channel.publish(event)
        channel.publish(None)
        unsubscribe()
        channel.publish(event)

        self.assertEqual(seen, [event, None])

    def test_failing_subscriber_does_not_block_others(self) -> None:
        channel = ProgressChannel()
        seen = []

        def _broken(_event) -> None:
            raise RuntimeError("observer bug")

        channel.subscribe(_broken)
        channel.subscribe(seen.append)
        with self.assertLogs("stepsolver.progress", level="ERROR"):
            channel.publish(None)

        self.assertEqual(seen, [None])

    def test_event_serializes_with_wire_names(self) -> None:
        event = ProgressEvent(3, 0, 'Thinking about: "x"', Phase.SEQUENTIAL_SOLVING)

        self.assertEqual(
            event.to_dict(),
            {
                "currentStep": 3,
                "totalSteps": 0,
                "stepDescription": 'Thinking about: "x"',
                "phase": "sequential_solving",
            },
        )

    def test_recording_progress_lists_phases(self) -> None:
        recorder = RecordingProgress()
        recorder.publish(ProgressEvent(0, 0, "a", Phase.UNDERSTANDING_PROBLEM))
        recorder.publish(None)

        self.assertEqual(recorder.phases, [Phase.UNDERSTANDING_PROBLEM])
        self.assertIsNone(recorder.events[-1])


if __name__ == "__main__":
    unittest.main()
