"""
Tests for attempt events and their structured logging.
"""

import logging

import pytest

from qcm.common.events import (
    AnswerSavedEvent,
    AttemptStartedEvent,
    AttemptSubmittedEvent,
    EventDispatcher,
    log_attempt_events,
)


class TestEventDispatcher:

    def test_dispatches_to_subscribers_in_order(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.subscribe(AttemptStartedEvent, lambda e: calls.append(("first", e.attempt_id)))
        dispatcher.subscribe("AttemptStartedEvent", lambda e: calls.append(("second", e.attempt_id)))

        dispatcher.dispatch(AttemptStartedEvent("a1", "s1", "quiz-a", attempt_number=1))

        assert calls == [("first", "a1"), ("second", "a1")]

    def test_only_matching_type(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.subscribe(AttemptSubmittedEvent, calls.append)

        dispatcher.dispatch(AttemptStartedEvent("a1", "s1", "quiz-a", attempt_number=1))

        assert calls == []

    def test_unsubscribe(self):
        dispatcher = EventDispatcher()
        calls = []
        dispatcher.subscribe(AttemptStartedEvent, calls.append)
        dispatcher.unsubscribe(AttemptStartedEvent, calls.append)

        dispatcher.dispatch(AttemptStartedEvent("a1", "s1", "quiz-a", attempt_number=1))

        assert calls == []


def test_event_to_dict():
    event = AttemptSubmittedEvent("a1", "s1", "quiz-a", score=66.7, passed=True)

    data = event.to_dict()

    assert data["event_type"] == "AttemptSubmittedEvent"
    assert data["attempt_id"] == "a1"
    assert data["score"] == 66.7
    assert data["passed"] is True
    assert "event_id" in data


class TestLogAttemptEvents:

    def test_logs_transitions_at_info(self, caplog):
        dispatcher = EventDispatcher()
        log_attempt_events(dispatcher, logging.getLogger("qcm.test.events"))

        with caplog.at_level(logging.DEBUG, logger="qcm.test.events"):
            dispatcher.dispatch(AttemptSubmittedEvent("a1", "s1", "quiz-a", score=50.0, passed=True))
            dispatcher.dispatch(AnswerSavedEvent("a1", "s1", "quiz-a", question_index=0, option_indices=[1]))

        submitted, saved = caplog.records
        assert submitted.levelno == logging.INFO
        assert submitted.getMessage() == "AttemptSubmittedEvent"
        assert submitted.data["score"] == 50.0
        assert saved.levelno == logging.DEBUG
        assert saved.data["option_indices"] == [1]

    def test_handler_can_be_unsubscribed(self, caplog):
        dispatcher = EventDispatcher()
        handler = log_attempt_events(dispatcher, logging.getLogger("qcm.test.events"))
        dispatcher.unsubscribe(AttemptStartedEvent, handler)

        with caplog.at_level(logging.DEBUG, logger="qcm.test.events"):
            dispatcher.dispatch(AttemptStartedEvent("a1", "s1", "quiz-a", attempt_number=1))

        assert caplog.records == []


@pytest.mark.asyncio
async def test_service_logs_events(service, caplog):
    with caplog.at_level(logging.INFO, logger="qcm"):
        attempt = await service.start_or_resume("s1", "quiz-a")
        await service.abandon(attempt.id)

    messages = [r.getMessage() for r in caplog.records if r.name == "qcm.events"]
    assert messages == ["AttemptStartedEvent", "AttemptAbandonedEvent"]
