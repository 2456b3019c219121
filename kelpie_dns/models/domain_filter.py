"""
Domain and zone filters for Kelpie-DNS.

A domain filter decides which DNS names this instance is allowed to manage.
A zone ID filter decides which provider zones are looked at at all.
"""

import re
from typing import Iterable, List, Optional

from kelpie_dns.models.models import normalize_dnsname


class DomainFilter:
    """
    Filter DNS names by include/exclude domain lists or by regular expression.

    ``example.com`` matches the domain and every subdomain, ``.example.com``
    matches subdomains only. Exclusions always win over inclusions.
    """

    def __init__(
        self,
        include: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
        regex: Optional[str] = None,
        regex_exclusion: Optional[str] = None,
    ):
        self.include = self._prepare(include)
        self.exclude = self._prepare(exclude)
        self.regex = re.compile(regex) if regex else None
        self.regex_exclusion = re.compile(regex_exclusion) if regex_exclusion else None

    @staticmethod
    def _prepare(domains: Optional[Iterable[str]]) -> List[str]:
        prepared = []
        for domain in domains or []:
            domain = domain.strip().lower().rstrip(".")
            if domain:
                prepared.append(domain)
        return prepared

    def is_configured(self) -> bool:
        return bool(self.include or self.exclude or self.regex or self.regex_exclusion)

    def match(self, dnsname: str) -> bool:
        """
        Check whether a DNS name is in scope.

        Args:
            dnsname: DNS name to check

        Returns:
            bool: True if the name may be managed
        """
        name = normalize_dnsname(dnsname)

        if self.regex or self.regex_exclusion:
            if self.regex_exclusion and self.regex_exclusion.search(name):
                return False
            if self.regex:
                return bool(self.regex.search(name))
            return True

        if self._matches_any(name, self.exclude):
            return False
        if not self.include:
            return True
        return self._matches_any(name, self.include)

    @staticmethod
    def _matches_any(name: str, domains: List[str]) -> bool:
        for domain in domains:
            if domain.startswith("*."):
                domain = "." + domain[2:]
            if domain.startswith("."):
                if name.endswith(domain):
                    return True
            elif name == domain or name.endswith("." + domain):
                return True
        return False

    def filters(self) -> List[str]:
        """Include list as advertised to webhook clients."""
        return list(self.include)

    def __repr__(self) -> str:
        return (
            f"DomainFilter(include={self.include}, exclude={self.exclude}, "
            f"regex={self.regex.pattern if self.regex else None})"
        )


class ZoneIDFilter:
    """
    Filter provider zones by ID. An empty filter matches every zone.
    """

    def __init__(self, zone_ids: Optional[Iterable[str]] = None):
        self.zone_ids = [zone_id for zone_id in (zone_ids or []) if zone_id]

    def match(self, zone_id: str) -> bool:
        if not self.zone_ids:
            return True
        return zone_id in self.zone_ids


def find_zone(zones: dict, hostname: str) -> Optional[str]:
    """
    Find the most specific zone for a host name.

    Args:
        zones: Mapping of zone ID to zone name
        hostname: Host name to look up

    Returns:
        Optional[str]: ID of the zone with the longest matching suffix
    """
    name = normalize_dnsname(hostname)
    best_id = None
    best_name = ""
    for zone_id, zone_name in zones.items():
        zone_name = normalize_dnsname(zone_name)
        if name == zone_name or name.endswith("." + zone_name):
            if len(zone_name) > len(best_name):
                best_id = zone_id
                best_name = zone_name
    return best_id
