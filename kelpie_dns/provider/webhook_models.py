"""Wire models for the webhook provider protocol."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from kelpie_dns.models.models import Changes, Endpoint, ProviderSpecificProperty

MEDIA_TYPE = "application/external.dns.webhook+json;version=1"


class ProviderSpecificModel(BaseModel):
    """Provider-specific property in an endpoint."""

    name: str
    value: str


class EndpointModel(BaseModel):
    """DNS endpoint as sent over the wire."""

    dns_name: str = Field(..., alias="dnsName")
    targets: List[str] = Field(default_factory=list)
    record_type: str = Field(..., alias="recordType")
    set_identifier: str = Field("", alias="setIdentifier")
    record_ttl: Optional[int] = Field(None, alias="recordTTL", ge=0)
    labels: Dict[str, str] = Field(default_factory=dict)
    provider_specific: List[ProviderSpecificModel] = Field(
        default_factory=list, alias="providerSpecific"
    )

    model_config = {"populate_by_name": True}

    @classmethod
    def from_endpoint(cls, endpoint: Endpoint) -> "EndpointModel":
        return cls(
            dns_name=endpoint.dnsname,
            targets=list(endpoint.targets),
            record_type=endpoint.record_type,
            set_identifier=endpoint.set_identifier,
            record_ttl=endpoint.record_ttl or None,
            labels=dict(endpoint.labels),
            provider_specific=[
                ProviderSpecificModel(name=p.name, value=p.value)
                for p in endpoint.provider_specific
            ],
        )

    def to_endpoint(self) -> Endpoint:
        return Endpoint(
            dnsname=self.dns_name,
            targets=list(self.targets),
            record_type=self.record_type,
            record_ttl=self.record_ttl or None,
            set_identifier=self.set_identifier or "",
            labels=dict(self.labels),
            provider_specific=[
                ProviderSpecificProperty(p.name, p.value) for p in self.provider_specific
            ],
        )


class ChangesModel(BaseModel):
    """DNS record changes to be applied."""

    create: Optional[List[EndpointModel]] = None
    update_old: Optional[List[EndpointModel]] = Field(None, alias="updateOld")
    update_new: Optional[List[EndpointModel]] = Field(None, alias="updateNew")
    delete: Optional[List[EndpointModel]] = None

    model_config = {"populate_by_name": True}

    @classmethod
    def from_changes(cls, changes: Changes) -> "ChangesModel":
        return cls(
            create=[EndpointModel.from_endpoint(ep) for ep in changes.create],
            update_old=[EndpointModel.from_endpoint(ep) for ep in changes.update_old],
            update_new=[EndpointModel.from_endpoint(ep) for ep in changes.update_new],
            delete=[EndpointModel.from_endpoint(ep) for ep in changes.delete],
        )

    def to_changes(self) -> Changes:
        return Changes(
            create=[ep.to_endpoint() for ep in self.create or []],
            update_old=[ep.to_endpoint() for ep in self.update_old or []],
            update_new=[ep.to_endpoint() for ep in self.update_new or []],
            delete=[ep.to_endpoint() for ep in self.delete or []],
        )


class FiltersModel(BaseModel):
    """Domain filter advertised during negotiation."""

    filters: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


def dump_endpoints(endpoints: List[Endpoint]) -> list:
    return [
        EndpointModel.from_endpoint(ep).model_dump(by_alias=True, exclude_none=True)
        for ep in endpoints
    ]


def load_endpoints(data: list) -> List[Endpoint]:
    return [EndpointModel.model_validate(item).to_endpoint() for item in data]
