from pydantic import BaseModel


class LoginRequest(BaseModel):
    password: str


class TokenResponse(BaseModel):
    success: bool = True
    role: str
    token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    success: bool = True
    role: str
