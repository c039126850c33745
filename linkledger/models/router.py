from typing import Optional

from sqlmodel import Field, SQLModel


class Router(SQLModel, table=True):
    """NAS router that enforces client connectivity."""

    __tablename__ = "routers"

    host: str = Field(primary_key=True, nullable=False)
    api_ssl_port: int = Field(default=8729)
    username: str = Field(nullable=False)
    password: str = Field(nullable=False)  # Fernet token, see utils/security.py
    is_enabled: bool = Field(default=True)
    hostname: Optional[str] = Field(default=None)

    # Custom name (will be prefixed with BL_ or WL_ automatically)
    address_list_name: Optional[str] = Field(default="morosos")
    # Options: "blacklist" (BL_), "whitelist" (WL_)
    address_list_strategy: Optional[str] = Field(default="blacklist")
