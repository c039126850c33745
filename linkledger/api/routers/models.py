from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RouterResponse(BaseModel):
    host: str
    username: str
    api_ssl_port: int
    is_enabled: bool
    hostname: Optional[str] = None
    address_list_name: Optional[str] = None
    address_list_strategy: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class RouterCreate(BaseModel):
    host: str = Field(min_length=1)
    username: str
    password: str
    api_ssl_port: int = 8729
    is_enabled: bool = True
    hostname: Optional[str] = None
    address_list_name: str = "morosos"
    address_list_strategy: Literal["blacklist", "whitelist"] = "blacklist"


class RouterUpdate(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    api_ssl_port: Optional[int] = None
    is_enabled: Optional[bool] = None
    hostname: Optional[str] = None
    address_list_name: Optional[str] = None
    address_list_strategy: Optional[Literal["blacklist", "whitelist"]] = None
