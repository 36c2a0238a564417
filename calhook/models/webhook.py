from pydantic import BaseModel, Field


class EventCreatedResponse(BaseModel):
    ok: bool = True
    message: str
    link: str | None = None
    data: dict


class ToolCallResult(BaseModel):
    tool_call_id: str = Field(serialization_alias="toolCallId")
    result: str


class ToolCallResponse(BaseModel):
    results: list[ToolCallResult]
