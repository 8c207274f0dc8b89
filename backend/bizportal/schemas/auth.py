from pydantic import BaseModel, EmailStr, Field, model_validator

from bizportal.schemas.user import UserResponse


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    password_confirmation: str
    job_title: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=20)

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegisterRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeResponse(UserResponse):
    permissions: list[str] = []
    is_superadmin: bool = False


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    preferences: dict | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    password: str = Field(..., min_length=8)
    password_confirmation: str

    @model_validator(mode="after")
    def _passwords_match(self) -> "ChangePasswordRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self
