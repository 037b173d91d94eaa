"""Schemas for authentication endpoints."""

from pydantic import BaseModel, EmailStr, Field, constr


class RegisterRequest(BaseModel):
    """Payload for creating an account with e-mail and password."""

    email: EmailStr = Field(..., description="Account e-mail address")
    password: constr(min_length=1, max_length=128) = Field(..., description="Plain text password")
    confirm_password: constr(min_length=1, max_length=128) = Field(
        ..., description="Must match the password"
    )
    username: constr(strip_whitespace=True, max_length=20) | None = Field(
        default=None,
        description="Optional handle; generated from the e-mail address when omitted",
    )
    first_name: constr(strip_whitespace=True, max_length=64) = ""
    last_name: constr(strip_whitespace=True, max_length=64) = ""


class LoginRequest(BaseModel):
    email: EmailStr
    password: constr(min_length=1, max_length=128)


class FederatedLoginRequest(BaseModel):
    """ID token issued by the federated identity provider."""

    id_token: constr(min_length=1) = Field(..., description="Provider-issued ID token")


class Token(BaseModel):
    """Access token returned after successful authentication."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")
    expires_in: int | None = Field(default=None, description="Seconds until the token expires")
    user_id: str


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: constr(min_length=1)
    password: constr(min_length=1, max_length=128)
    confirm_password: constr(min_length=1, max_length=128)
