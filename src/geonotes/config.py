from pydantic import Field
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = ""  # MongoDB URL with database name as path; empty selects in-memory storage
    debug: bool = False
    quota_limit: int = Field(10, ge=0)  # Max private notes per owner
    quota_counts_closed: bool = True  # Closed private notes keep occupying quota until deleted
    description_max_length: int = Field(1000, ge=1)
    user_data_max_bytes: int = Field(16_384, ge=2)  # Size of the JSON-encoded user_data document
    spatial_cell_size_meters: float = Field(1000.0, gt=0)  # Grid cell side, ~p90 of expected query radius
    max_query_radius_meters: float = Field(50_000.0, gt=0)
    bulk_max_items: int = Field(1000, ge=1)
    bulk_concurrency: int = Field(8, ge=1)

    model_config = {
        "env_file": [".env"],
        "env_prefix": "GEONOTES_",
        "extra": "ignore",
    }
