"""Labels identifying the containers that belong to a test session."""

from typing import Dict, Mapping

TESTCONTAINERS_LABEL = "org.testcontainers.python"
TESTCONTAINERS_LABEL_SESSION_ID = TESTCONTAINERS_LABEL + ".sessionId"
TESTCONTAINERS_LABEL_IS_REAPER = TESTCONTAINERS_LABEL + ".reaper"


def session_labels(session_id: str) -> Dict[str, str]:
    """Labels to put on every container created in the session.

    The reaper removes everything carrying these labels once the session's
    connection to it goes away.
    """
    return {
        TESTCONTAINERS_LABEL: "true",
        TESTCONTAINERS_LABEL_SESSION_ID: session_id,
    }


def reaper_labels(session_id: str) -> Dict[str, str]:
    """Labels for the reaper container itself."""
    labels = {TESTCONTAINERS_LABEL_IS_REAPER: "true"}
    labels.update(session_labels(session_id))
    return labels


def label_filter(labels: Mapping[str, str]) -> str:
    """Render labels as a Ryuk filter line (without the trailing newline).

    Keys are sorted so the same labels always give the same filter.
    """
    return "&".join(f"label={key}={labels[key]}" for key in sorted(labels))
