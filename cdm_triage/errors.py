"""Exceptions raised by the triage pipeline."""


class TriageError(Exception):
    """Base class for all triage errors."""
    pass


class IngestionError(TriageError):
    """Raised when a bulk import cannot continue."""
    pass


class SimulationError(TriageError):
    """Raised when a Monte Carlo estimate cannot be produced."""
    pass


class SimulationCancelled(SimulationError):
    """Raised when a caller abandons an in-flight estimate."""
    pass


class EventNotFound(TriageError):
    """Raised when an event id is not in the store."""

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id
