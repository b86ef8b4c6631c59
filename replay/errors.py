# replay/errors.py
from __future__ import annotations


class FetchError(Exception):
    """Anything fetch_batch() raises. Fatal to that call only."""


class TransportError(FetchError):
    """Connection / protocol failure or a payload that is not a JSON list."""


class SourceError(Exception):
    """Non-success response for one participant; the rest of the batch continues."""

    def __init__(self, participant_id: int, status_code: int):
        super().__init__(f"participant={participant_id} status={status_code}")
        self.participant_id = participant_id
        self.status_code = status_code


class DataError(Exception):
    """A single unusable record: bad timestamp, sentinel position, failed validation."""
