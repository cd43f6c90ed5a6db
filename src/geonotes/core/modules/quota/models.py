from pydantic import BaseModel


class Admission(BaseModel):
    """Outcome of a private-note admission attempt."""

    owner_id: str
    admitted: bool
    count: int  # Counter value after the attempt
    limit: int
