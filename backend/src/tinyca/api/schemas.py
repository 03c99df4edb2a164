"""Pydantic schemas for the signing API."""

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress


class SignRequest(BaseModel):
    """Request body for signing hostnames and IP addresses."""

    model_config = ConfigDict(populate_by_name=True)

    hostnames: list[str] = Field(default_factory=list, alias="dnsNames")
    addresses: list[IPvAnyAddress] = Field(default_factory=list, alias="IPs")


class HealthResponse(BaseModel):
    status: str
    service: str
