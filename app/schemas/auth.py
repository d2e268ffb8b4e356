from pydantic import BaseModel, EmailStr, Field, constr


class SignupRequest(BaseModel):
    name: constr(strip_whitespace=True, min_length=2, max_length=80)
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
