"""
Failure kinds raised while turning one predicted-delay event into one risk assessment.

All of them are recoverable at the pipeline level:
  - MalformedRecord     payload failed validation; dead-lettered (redelivery cannot fix it)
  - FactorLookupFailed  provider unavailable or too slow; neutral factors are substituted
  - PublishFailed       outbound channel rejected the write; inbound is released for retry
"""

from __future__ import annotations


class ProcessingError(Exception):
    """Base class for pipeline failures on a single inbound event."""

    kind = "processing_error"

    def __init__(self, message: str, *, shipment_id: str | None = None):
        super().__init__(message)
        self.shipment_id = shipment_id


class MalformedRecord(ProcessingError):
    kind = "malformed_record"


class FactorLookupFailed(ProcessingError):
    kind = "factor_lookup_failed"


class PublishFailed(ProcessingError):
    kind = "publish_failed"
