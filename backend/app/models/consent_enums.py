"""
SIM-tracking consent enumerations.
"""

import enum


class ConsentStatus(str, enum.Enum):
    """
    Driver consent status enumeration.

    Status flow:
        not_requested → requested → granted | revoked
        granted → expired (once consent_expires_at has passed)
        granted → revoked
    """
    NOT_REQUESTED = "not_requested"
    REQUESTED = "requested"
    GRANTED = "granted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ConsentDecision(str, enum.Enum):
    """Outcome reported by the carrier consent channel."""
    GRANTED = "granted"
    DENIED = "denied"
