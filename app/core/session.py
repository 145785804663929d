from dataclasses import dataclass


@dataclass(frozen=True)
class SessionContext:
    """Authenticated caller, passed explicitly to the pipeline and the record store."""

    user_id: str
    user_type: str = "citizen"
