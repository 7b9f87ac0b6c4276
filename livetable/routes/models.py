"""Pydantic request models for API endpoints."""

from pydantic import BaseModel


class NarratorTestBody(BaseModel):
    message: str = ""
