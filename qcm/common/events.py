"""
Domain events for the attempt lifecycle.

Every attempt transition publishes one of the events below through an
EventDispatcher. Handlers are synchronous and run in subscription order.
"""

import uuid
import time
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence


class DomainEvent:
    """Base class for all domain events"""

    def __init__(self, event_id: Optional[str] = None, timestamp: Optional[float] = None):
        """Initialize a domain event with optional ID and timestamp"""
        self.event_id = event_id or str(uuid.uuid4())
        self.timestamp = timestamp or time.time()
        self.event_type = self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the event's public attributes into a dictionary."""
        return {k: v for k, v in self.__dict__.items() if not k.startswith('_')}


class EventDispatcher:
    """Event dispatcher for domain events"""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[DomainEvent], None]]] = {}

    def subscribe(self, event_type, handler: Callable[[DomainEvent], None]) -> None:
        """Subscribe a handler to an event type (class or class name)"""
        key = event_type if isinstance(event_type, str) else event_type.__name__
        self._subscribers.setdefault(key, []).append(handler)

    def dispatch(self, event: DomainEvent) -> None:
        """Dispatch an event to all subscribers"""
        for handler in list(self._subscribers.get(event.event_type, [])):
            handler(event)

    def unsubscribe(self, event_type, handler: Callable[[DomainEvent], None]) -> None:
        """Unsubscribe a handler from an event type"""
        key = event_type if isinstance(event_type, str) else event_type.__name__
        handlers = self._subscribers.get(key)
        if handlers and handler in handlers:
            handlers.remove(handler)


#------------------------------------------------------------------------------
# Attempt Events
#------------------------------------------------------------------------------

class AttemptEvent(DomainEvent):
    """Base class for events about a single attempt"""

    def __init__(self, attempt_id: str, student_id: str, quiz_id: str,
                 event_id: Optional[str] = None, timestamp: Optional[float] = None):
        super().__init__(event_id, timestamp)
        self.attempt_id = attempt_id
        self.student_id = student_id
        self.quiz_id = quiz_id


class AttemptStartedEvent(AttemptEvent):
    """Event raised when a new attempt is created"""

    def __init__(self, attempt_id, student_id, quiz_id, attempt_number, expires_at=None,
                 event_id=None, timestamp=None):
        super().__init__(attempt_id, student_id, quiz_id, event_id, timestamp)
        self.attempt_number = attempt_number
        self.expires_at = expires_at


class AnswerSavedEvent(AttemptEvent):
    """Event raised when an answer is saved or cleared"""

    def __init__(self, attempt_id, student_id, quiz_id, question_index, option_indices,
                 event_id=None, timestamp=None):
        super().__init__(attempt_id, student_id, quiz_id, event_id, timestamp)
        self.question_index = question_index
        self.option_indices = option_indices


class AttemptSubmittedEvent(AttemptEvent):
    """Event raised when an attempt is submitted and scored"""

    def __init__(self, attempt_id, student_id, quiz_id, score, passed,
                 event_id=None, timestamp=None):
        super().__init__(attempt_id, student_id, quiz_id, event_id, timestamp)
        self.score = score
        self.passed = passed


class AttemptAbandonedEvent(AttemptEvent):
    """Event raised when a student gives up an attempt"""


class AttemptExpiredEvent(AttemptEvent):
    """Event raised when an attempt passes its deadline"""

    def __init__(self, attempt_id, student_id, quiz_id, expires_at=None,
                 event_id=None, timestamp=None):
        super().__init__(attempt_id, student_id, quiz_id, event_id, timestamp)
        self.expires_at = expires_at


ATTEMPT_EVENTS: Sequence[type] = (
    AttemptStartedEvent,
    AnswerSavedEvent,
    AttemptSubmittedEvent,
    AttemptAbandonedEvent,
    AttemptExpiredEvent,
)


def log_attempt_events(dispatcher: EventDispatcher, logger: logging.Logger) -> Callable[[DomainEvent], None]:
    """
    Subscribe a handler that writes every attempt event as a structured log record.

    Args:
        dispatcher: Dispatcher to subscribe to
        logger: Logger receiving the records

    Returns:
        The subscribed handler, so callers can unsubscribe it
    """
    def handler(event: DomainEvent) -> None:
        level = logging.DEBUG if isinstance(event, AnswerSavedEvent) else logging.INFO
        logger.log(level, event.event_type, extra={"data": event.to_dict()})

    for event_type in ATTEMPT_EVENTS:
        dispatcher.subscribe(event_type, handler)
    return handler
