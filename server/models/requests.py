from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    query: str = ""
    limit: int | None = Field(default=None, ge=1, le=100)
