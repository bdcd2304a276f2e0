# faultline/schemas/common.py
from pydantic import BaseModel, Field

from faultline.core.envelope import RestErrorEnvelope

__all__ = ["OkResponse", "RestErrorEnvelope", "error_responses"]


class OkResponse(BaseModel):
    ok: bool = Field(description="Always true")

    model_config = {"json_schema_extra": {"examples": [{"ok": True}]}}


def error_responses(*statuses: int) -> dict[int, dict]:
    """OpenAPI ``responses=`` entries documenting the REST error envelope."""

    return {status: {"model": RestErrorEnvelope} for status in statuses}
