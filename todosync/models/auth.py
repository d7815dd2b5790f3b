from typing import Literal

from pydantic import BaseModel, ConfigDict


class UserInfo(BaseModel):
    uid: str
    email: str
    display_name: str | None = None


class Session(BaseModel):
    """Signed-in user persisted between runs."""

    uid: str
    email: str
    display_name: str | None = None
    id_token: str
    refresh_token: str
    expires_at: float  # epoch seconds

    def user(self) -> UserInfo:
        return UserInfo(uid=self.uid, email=self.email, display_name=self.display_name)


class AuthState(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: Literal["unauthenticated", "loading", "authenticated", "error"]
    user: UserInfo | None = None
    message: str | None = None

    @classmethod
    def unauthenticated(cls) -> "AuthState":
        return cls(state="unauthenticated")

    @classmethod
    def loading(cls) -> "AuthState":
        return cls(state="loading")

    @classmethod
    def authenticated(cls, user: UserInfo) -> "AuthState":
        return cls(state="authenticated", user=user)

    @classmethod
    def error(cls, message: str) -> "AuthState":
        return cls(state="error", message=message)


class CredentialsRequest(BaseModel):
    email: str
    password: str
