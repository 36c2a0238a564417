from pydantic import BaseModel


class StatusResponse(BaseModel):
    mode: str
    authenticated: bool
    message: str
