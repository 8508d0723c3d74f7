from pydantic import BaseModel

from cdn_console.models.user import UserRole


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: str | None
    role: UserRole
    cdn_ids: list[str]


class ApiKeyResponse(BaseModel):
    """Raw API key - only returned when generated."""

    api_key: str
    message: str
