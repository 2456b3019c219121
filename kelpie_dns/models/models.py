"""
Data models for Kelpie-DNS.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

RECORD_TYPE_A = "A"
RECORD_TYPE_AAAA = "AAAA"
RECORD_TYPE_CNAME = "CNAME"
RECORD_TYPE_TXT = "TXT"
RECORD_TYPE_NS = "NS"
RECORD_TYPE_MX = "MX"
RECORD_TYPE_SRV = "SRV"
RECORD_TYPE_PTR = "PTR"
RECORD_TYPE_NAPTR = "NAPTR"
RECORD_TYPE_CAA = "CAA"

KNOWN_RECORD_TYPES = (
    RECORD_TYPE_A,
    RECORD_TYPE_AAAA,
    RECORD_TYPE_CNAME,
    RECORD_TYPE_TXT,
    RECORD_TYPE_NS,
    RECORD_TYPE_MX,
    RECORD_TYPE_SRV,
    RECORD_TYPE_PTR,
    RECORD_TYPE_NAPTR,
    RECORD_TYPE_CAA,
)

# Types that can only ever carry one target
SINGLE_VALUE_TYPES = frozenset({RECORD_TYPE_CNAME})

# Types whose targets are host names and compare case-insensitively
HOSTNAME_TARGET_TYPES = frozenset(
    {RECORD_TYPE_CNAME, RECORD_TYPE_NS, RECORD_TYPE_PTR}
)

DEFAULT_MANAGED_RECORD_TYPES = (RECORD_TYPE_A, RECORD_TYPE_AAAA, RECORD_TYPE_CNAME)

HERITAGE = "kelpie-dns"
OWNER_LABEL_KEY = "owner"
RESOURCE_LABEL_KEY = "resource"
OWNED_RECORD_LABEL_KEY = "owned-record"

# Provider-specific property names shared between sources and providers
CLOUDFLARE_PROXIED = "cloudflare-proxied"

EndpointKey = Tuple[str, str, str]


def normalize_dnsname(name: str) -> str:
    """Lower-case a DNS name and strip its trailing dot."""
    return name.strip().lower().rstrip(".")


@dataclass
class ProviderSpecificProperty:
    """
    Opaque name/value hint understood by a specific provider.
    """

    name: str
    value: str


@dataclass
class Endpoint:
    """
    Represents a DNS endpoint (record) managed by Kelpie-DNS.
    """

    dnsname: str
    targets: List[str]
    record_type: str
    record_ttl: Optional[int] = None
    set_identifier: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    provider_specific: List[ProviderSpecificProperty] = field(default_factory=list)

    @property
    def normalized_name(self) -> str:
        return normalize_dnsname(self.dnsname)

    @property
    def key(self) -> EndpointKey:
        """
        Identity key used to match current and desired endpoints.

        Returns:
            EndpointKey: (normalized name, record type, set identifier)
        """
        return (self.normalized_name, self.record_type, self.set_identifier or "")

    @property
    def id(self) -> str:
        """
        Printable form of the identity key.

        Returns:
            str: Unique identifier
        """
        if self.set_identifier:
            return f"{self.normalized_name}:{self.record_type}:{self.set_identifier}"
        return f"{self.normalized_name}:{self.record_type}"

    @property
    def owner(self) -> str:
        return self.labels.get(OWNER_LABEL_KEY, "")

    @property
    def resource(self) -> str:
        return self.labels.get(RESOURCE_LABEL_KEY, "")

    def is_single_value(self) -> bool:
        return self.record_type in SINGLE_VALUE_TYPES

    def _comparable_targets(self) -> List[str]:
        targets = [target.strip() for target in self.targets]
        if self.record_type in HOSTNAME_TARGET_TYPES:
            targets = [target.lower().rstrip(".") for target in targets]
        return targets

    def targets_equal(self, other: "Endpoint") -> bool:
        """
        Compare targets. Multi-value records compare as sets, single-value
        records compare their only value.
        """
        mine = self._comparable_targets()
        theirs = other._comparable_targets()
        if self.is_single_value():
            return mine[:1] == theirs[:1]
        return sorted(set(mine)) == sorted(set(theirs))

    def provider_specific_equal(self, other: "Endpoint", ordered: bool = False) -> bool:
        mine = [(p.name, p.value) for p in self.provider_specific]
        theirs = [(p.name, p.value) for p in other.provider_specific]
        if ordered:
            return mine == theirs
        return sorted(set(mine)) == sorted(set(theirs))

    def same_record(self, other: "Endpoint", ordered_provider_specific: bool = False) -> bool:
        """
        Deep equality used to decide whether an existing record must be updated.
        Labels are bookkeeping and never take part in the comparison.

        Args:
            other: Endpoint to compare with
            ordered_provider_specific: Whether provider-specific order matters

        Returns:
            bool: True if both endpoints describe the same record state
        """
        if self.key != other.key:
            return False
        if not self.targets_equal(other):
            return False
        if (self.record_ttl or 0) != (other.record_ttl or 0):
            return False
        return self.provider_specific_equal(other, ordered=ordered_provider_specific)

    def validate(self) -> Optional[str]:
        """
        Check that the endpoint can be written to a provider.

        Returns:
            Optional[str]: Reason the endpoint is invalid, or None if it is valid
        """
        if not self.normalized_name:
            return "empty DNS name"
        if not [target for target in self.targets if target.strip()]:
            return "no targets"
        if self.is_single_value() and len(set(self._comparable_targets())) > 1:
            return f"{self.record_type} record cannot have more than one target"
        return None

    def normalized(self) -> "Endpoint":
        """Copy with a normalized DNS name and canonically ordered targets."""
        targets = [target.strip() for target in self.targets if target.strip()]
        if not self.is_single_value():
            targets = sorted(set(targets))
        return replace(
            self,
            dnsname=self.normalized_name,
            targets=targets,
            labels=dict(self.labels),
            provider_specific=list(self.provider_specific),
        )

    def copy(self) -> "Endpoint":
        return replace(
            self,
            targets=list(self.targets),
            labels=dict(self.labels),
            provider_specific=list(self.provider_specific),
        )

    def with_labels(self, labels: Dict[str, str]) -> "Endpoint":
        """Returns a copy with the given labels added or overwritten."""
        endpoint = self.copy()
        endpoint.labels.update(labels)
        return endpoint

    def get_provider_specific(self, name: str) -> Optional[str]:
        for prop in self.provider_specific:
            if prop.name == name:
                return prop.value
        return None

    def set_provider_specific(self, name: str, value: str) -> None:
        # Properties are shared between copies, so replace instead of mutating
        self.provider_specific = [p for p in self.provider_specific if p.name != name]
        self.provider_specific.append(ProviderSpecificProperty(name, value))

    def delete_provider_specific(self, name: str) -> None:
        self.provider_specific = [p for p in self.provider_specific if p.name != name]

    def __str__(self) -> str:
        ttl = self.record_ttl if self.record_ttl else "default"
        return f"{self.id} -> {','.join(self.targets)} (TTL: {ttl})"


@dataclass
class Changes:
    """
    Represents changes to be applied to DNS records.
    """

    create: List[Endpoint] = field(default_factory=list)
    update_old: List[Endpoint] = field(default_factory=list)
    update_new: List[Endpoint] = field(default_factory=list)
    delete: List[Endpoint] = field(default_factory=list)

    def has_changes(self) -> bool:
        """
        Check if there are any changes to be applied.

        Returns:
            bool: True if there are changes, False otherwise
        """
        return bool(self.create or self.update_old or self.update_new or self.delete)

    def is_valid(self) -> bool:
        return len(self.update_old) == len(self.update_new)

    def updates(self) -> List[Tuple[Endpoint, Endpoint]]:
        return list(zip(self.update_old, self.update_new))

    def summary(self) -> str:
        return (
            f"{len(self.create)} creates, {len(self.update_new)} updates, "
            f"{len(self.delete)} deletes"
        )
