from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class AuthUser(BaseModel):
    """
    Represents an authenticated caller decoded from a bearer token.

    Role information arrives in several claim shapes (``role``, ``roles``,
    ``admin``/``seller`` flags); they are folded into ``roles`` on load.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    roles: list[str] = Field(default_factory=list)
    seller_user_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def collect_roles(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        roles = set(data.get("roles") or [])
        if data.get("role"):
            roles.add(data["role"])
        if data.get("admin") or data.get("is_admin") or data.get("platform_admin"):
            roles.add("admin")
        if data.get("seller") or data.get("is_seller"):
            roles.add("seller")
        data["roles"] = sorted(roles)
        data.setdefault("seller_user_id", data.get("seller_id"))
        return data

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles or self.role == "service_role"

    @property
    def is_seller(self) -> bool:
        return "seller" in self.roles

    @property
    def seller_id(self) -> str:
        """The seller account this caller acts for."""
        return self.seller_user_id or self.user_id
