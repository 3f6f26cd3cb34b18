"""Domain records (dataclasses) and API request/response models (pydantic)."""
