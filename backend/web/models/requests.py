"""Pydantic request models for the livepatch web API."""

from pydantic import BaseModel, Field


class CreateWorkspaceRequest(BaseModel):
    name: str = Field(..., min_length=1)
    workspace_id: str | None = None


class CreateCheckpointRequest(BaseModel):
    message_id: str = Field(..., min_length=1)


class MessageRequest(BaseModel):
    message_id: str = Field(..., min_length=1)


class RunTurnRequest(BaseModel):
    message_id: str = Field(..., min_length=1)
    chunks: list[str] = Field(default_factory=list, description="Scripted stream, delivered in order")
