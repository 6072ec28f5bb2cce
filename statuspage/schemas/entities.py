from pydantic import BaseModel, Field


class CheckConfigUpdate(BaseModel):
    check_enabled: bool | None = None
    check_type: str | None = Field(None, description="NONE, PING, HTTP_GET, HEALTH_ENDPOINT or TCP_PORT")
    check_url: str | None = Field(None, max_length=500)
    check_interval_seconds: int | None = Field(None, ge=1)
    check_timeout_seconds: int | None = Field(None, ge=1)
    check_expected_status: int | None = Field(None, ge=100, le=599)
    check_failure_threshold: int | None = Field(None, ge=1)
    check_inherit_from_app: bool | None = None  # components only


class PlatformCreate(CheckConfigUpdate):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = None
    organization_id: str | None = None
    is_public: bool = True


class AppCreate(CheckConfigUpdate):
    name: str = Field(min_length=1, max_length=255)
    platform_id: str | None = None
    slug: str | None = None
    organization_id: str | None = None
    is_public: bool = True


class ComponentCreate(CheckConfigUpdate):
    app_id: str
    name: str = Field(min_length=1, max_length=255)
    position: int = 0
    group_name: str | None = None
