from pydantic import BaseModel


class UpdateResult(BaseModel):
    """Outcome of a single-document update.

    Attributes:
        matched_count: Number of documents matching the filter (0 or 1).
        modified_count: Number of documents actually changed (0 or 1).
    """

    matched_count: int
    modified_count: int
