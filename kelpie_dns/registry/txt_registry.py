"""
TXT registry module for Kelpie-DNS.

This module is responsible for tracking which DNS records are managed by Kelpie-DNS
using TXT records.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set, Tuple

from kelpie_dns.exceptions import OwnershipError
from kelpie_dns.models.models import (
    OWNER_LABEL_KEY,
    OWNED_RECORD_LABEL_KEY,
    RECORD_TYPE_CNAME,
    RECORD_TYPE_TXT,
    RESOURCE_LABEL_KEY,
    Changes,
    Endpoint,
    EndpointKey,
)
from kelpie_dns.registry.txt_format import (
    ENCRYPTED_PREFIX,
    FORMAT_LEGACY,
    AffixNameMapper,
    InvalidHeritageError,
    OwnershipCodec,
)


class TXTRegistry:
    """
    Registry that tracks DNS records using TXT records.
    """

    def __init__(
        self,
        provider,
        txt_owner_id: str = "default",
        txt_prefix: str = "",
        txt_suffix: str = "",
        txt_wildcard_replacement: str = "",
        txt_new_format_only: bool = False,
        cache_interval: float = 0,
        encryption_key: Optional[str] = None,
    ):
        """
        Initialize a TXTRegistry.

        Args:
            provider: DNS provider
            txt_owner_id: Owner ID for TXT records
            txt_prefix: Prefix for TXT record names
            txt_suffix: Suffix for TXT record names, exclusive with txt_prefix
            txt_wildcard_replacement: Replacement for wildcards in TXT record names
            txt_new_format_only: Only write the new TXT name and content format
            cache_interval: Seconds to reuse provider records between cycles (0 disables)
            encryption_key: Encryption key for TXT record content

        Raises:
            ConfigError: If both a prefix and a suffix are configured
        """
        self.provider = provider
        self.txt_owner_id = txt_owner_id
        self.mapper = AffixNameMapper(txt_prefix, txt_suffix, txt_wildcard_replacement)
        self.codec = OwnershipCodec(encryption_key)
        self.txt_new_format_only = txt_new_format_only
        self.cache_interval = cache_interval
        self.errors: List[OwnershipError] = []
        self.logger = logging.getLogger("kelpie-dns.registry.txt")

        self._cache: Optional[List[Endpoint]] = None
        self._cache_time = 0.0
        self._cache_lock = asyncio.Lock()

        # Ownership records seen on the last read, keyed by (name, set identifier)
        self._companions: Dict[Tuple[str, str], Endpoint] = {}
        self._companion_labels: Dict[Tuple[str, str], Dict[str, str]] = {}
        # Provider TXT records holding at least one ownership value, as read
        self._txt_records: Dict[EndpointKey, Endpoint] = {}
        # Record types held by data records at each name on the last read
        self._occupied: Dict[str, Set[str]] = {}
        self._owned: List[Endpoint] = []

    @property
    def owner_id(self) -> str:
        return self.txt_owner_id

    @property
    def provider_specific_ordered(self) -> bool:
        return getattr(self.provider, "provider_specific_ordered", False)

    async def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        return await self.provider.adjust_endpoints(endpoints)

    async def records(self) -> List[Endpoint]:
        """
        Returns every record of the provider except ownership records. Records owned
        by this instance carry the owner and resource labels.

        Returns:
            List[Endpoint]: List of endpoints
        """
        all_records = await self._provider_records()

        companions: Dict[Tuple[str, str], Endpoint] = {}
        companion_labels: Dict[Tuple[str, str], Dict[str, str]] = {}
        txt_records: Dict[EndpointKey, Endpoint] = {}
        data_records: List[Endpoint] = []
        for record in all_records:
            if record.record_type == RECORD_TYPE_TXT:
                # Providers may group ownership values and other TXT values under one record
                decoded = []
                data_targets = []
                for value in record.targets:
                    labels = self._decode_companion(record.normalized_name, value)
                    if labels is None:
                        data_targets.append(value)
                    else:
                        decoded.append((labels, value))
                if decoded:
                    # Prefer our own value when several owners share the name
                    decoded.sort(key=lambda item: item[0].get(OWNER_LABEL_KEY) != self.txt_owner_id)
                    labels, value = decoded[0]
                    companion = record.copy()
                    companion.targets = [value]
                    key = (record.normalized_name, record.set_identifier)
                    companions[key] = companion
                    companion_labels[key] = labels
                    txt_records[record.key] = record
                    if not data_targets:
                        continue
                    record = record.copy()
                    record.targets = data_targets
            data_records.append(record)

        occupied: Dict[str, Set[str]] = {}
        endpoints = []
        owned = []
        for record in data_records:
            occupied.setdefault(record.normalized_name, set()).add(record.record_type)
            endpoint = record.copy()
            # Ownership labels come from the ownership records only
            endpoint.labels.pop(OWNER_LABEL_KEY, None)
            endpoint.labels.pop(RESOURCE_LABEL_KEY, None)
            labels = self._lookup_labels(endpoint, companion_labels)
            if labels is not None:
                owner = labels.get(OWNER_LABEL_KEY, "")
                if owner == self.txt_owner_id:
                    endpoint.labels.update(labels)
                    owned.append(endpoint)
                else:
                    self.logger.debug(
                        f"Record {endpoint.id} is owned by '{owner}', not by '{self.txt_owner_id}'"
                    )
            endpoints.append(endpoint)

        self._companions = companions
        self._companion_labels = companion_labels
        self._txt_records = txt_records
        self._occupied = occupied
        self._owned = owned
        self.logger.debug(
            f"Found {len(endpoints)} records, {len(owned)} owned by '{self.txt_owner_id}', "
            f"{len(companions)} ownership records"
        )
        return endpoints

    async def apply_changes(self, changes: Changes) -> None:
        """
        Adds the ownership record changes matching the given changes and forwards
        everything to the provider in a single call.

        Args:
            changes: Changes to apply
        """
        self.errors = []
        planned_names = self._planned_names(changes)
        augmented = Changes(
            create=[self._with_owner(ep) for ep in changes.create],
            update_old=list(changes.update_old),
            update_new=[self._with_owner(ep) for ep in changes.update_new],
            delete=list(changes.delete),
        )

        companion_keys = set()
        for endpoint in list(augmented.create):
            for companion in self._companion_creates(endpoint, planned_names):
                # Records of several types at one name share a legacy ownership record
                if companion.key not in companion_keys:
                    companion_keys.add(companion.key)
                    augmented.create.append(companion)

        for old_endpoint, new_endpoint in changes.updates():
            self._companion_update(old_endpoint, new_endpoint, augmented, planned_names)

        deleted_names: Set[str] = set()
        for endpoint in changes.delete:
            if endpoint.owner != self.txt_owner_id:
                continue
            augmented.delete.extend(
                self._companion_deletes(endpoint, changes.delete, deleted_names)
            )

        for error in self.errors:
            self.logger.error(str(error))

        augmented = self._fold_shared_txt(augmented)
        try:
            await self.provider.apply_changes(augmented)
        except Exception:
            self._invalidate_cache()
            raise
        self._patch_cache(augmented)

    def _with_owner(self, endpoint: Endpoint) -> Endpoint:
        return endpoint.with_labels({OWNER_LABEL_KEY: self.txt_owner_id})

    def _ownership_labels(self, endpoint: Endpoint) -> Dict[str, str]:
        labels = {OWNER_LABEL_KEY: self.txt_owner_id}
        if endpoint.resource:
            labels[RESOURCE_LABEL_KEY] = endpoint.resource
        return labels

    def _companion_endpoint(self, name: str, endpoint: Endpoint, new_format: bool) -> Endpoint:
        return Endpoint(
            dnsname=name,
            targets=[self.codec.encode(self._ownership_labels(endpoint), new_format)],
            record_type=RECORD_TYPE_TXT,
            set_identifier=endpoint.set_identifier,
            labels={OWNED_RECORD_LABEL_KEY: endpoint.normalized_name},
        )

    def _planned_names(self, changes: Changes) -> Dict[str, Set[str]]:
        occupied = {name: set(types) for name, types in self._occupied.items()}
        for endpoint in changes.create + changes.update_new:
            occupied.setdefault(endpoint.normalized_name, set()).add(endpoint.record_type)
        return occupied

    @staticmethod
    def _occupant(name: str, planned_names: Dict[str, Set[str]]) -> Optional[str]:
        """
        Returns the type of a record holding the name of an ownership record.
        A CNAME cannot share its name with anything, and a TXT record that is not
        ours would be merged with the ownership value.
        """
        types = planned_names.get(name, set())
        for record_type in (RECORD_TYPE_CNAME, RECORD_TYPE_TXT):
            if record_type in types:
                return record_type
        return None

    def _can_place(self, name: str, endpoint: Endpoint) -> bool:
        """Whether an ownership record called name lands in the zone of endpoint."""
        zone = self.provider.zone_for(endpoint.dnsname)
        return zone is None or self.provider.zone_for(name) == zone

    def _companion_creates(
        self, endpoint: Endpoint, planned_names: Dict[str, Set[str]]
    ) -> List[Endpoint]:
        creates = []
        txt_name = self.mapper.to_txt_name(endpoint.dnsname, endpoint.record_type)
        occupant = self._occupant(txt_name, planned_names)
        if occupant is not None:
            self.errors.append(
                OwnershipError(
                    f"Cannot create ownership record {txt_name} for {endpoint.id}: "
                    f"name is taken by a {occupant} record",
                    endpoint.id,
                )
            )
            return creates
        if not self._can_place(txt_name, endpoint):
            self.errors.append(
                OwnershipError(
                    f"Cannot create ownership record {txt_name} for {endpoint.id}: "
                    f"name is outside the zone of the record",
                    endpoint.id,
                )
            )
            creates.extend(self._legacy_companion_creates(endpoint, planned_names))
            return creates

        key = (txt_name, endpoint.set_identifier)
        if key not in self._companions:
            creates.append(self._companion_endpoint(txt_name, endpoint, new_format=True))
        elif not self._owns_companion(key):
            self.errors.append(
                OwnershipError(
                    f"Cannot create ownership record {txt_name} for {endpoint.id}: "
                    f"an ownership record of owner "
                    f"'{self._companion_labels[key].get(OWNER_LABEL_KEY, '')}' already exists",
                    endpoint.id,
                )
            )
            return creates

        creates.extend(self._legacy_companion_creates(endpoint, planned_names))
        return creates

    def _legacy_companion_creates(
        self, endpoint: Endpoint, planned_names: Dict[str, Set[str]]
    ) -> List[Endpoint]:
        if self.txt_new_format_only:
            return []
        legacy_name = self.mapper.to_legacy_txt_name(endpoint.dnsname)
        occupant = self._occupant(legacy_name, planned_names)
        if occupant is not None:
            self.logger.debug(
                f"Skipping legacy ownership record {legacy_name} for {endpoint.id}: "
                f"name is taken by a {occupant} record"
            )
            return []
        if not self._can_place(legacy_name, endpoint):
            self.logger.debug(
                f"Skipping legacy ownership record {legacy_name} for {endpoint.id}: "
                f"name is outside the zone of the record"
            )
            return []
        if (legacy_name, endpoint.set_identifier) in self._companions:
            return []
        return [self._companion_endpoint(legacy_name, endpoint, new_format=False)]

    def _companion_update(
        self,
        old_endpoint: Endpoint,
        new_endpoint: Endpoint,
        augmented: Changes,
        planned_names: Dict[str, Set[str]],
    ) -> None:
        txt_name = self.mapper.to_txt_name(new_endpoint.dnsname, new_endpoint.record_type)
        existing = self._companions.get((txt_name, new_endpoint.set_identifier))
        if existing is None:
            # Owned through a legacy record only: add the new format record
            if self._occupant(txt_name, planned_names) is None and self._can_place(
                txt_name, new_endpoint
            ):
                augmented.create.append(
                    self._companion_endpoint(txt_name, new_endpoint, new_format=True)
                )
            return
        if old_endpoint.resource == new_endpoint.resource:
            return
        self.logger.info(
            f"Ownership of {new_endpoint.id} moves from resource '{old_endpoint.resource}' "
            f"to '{new_endpoint.resource}'"
        )
        augmented.update_old.append(existing)
        augmented.update_new.append(
            self._companion_endpoint(txt_name, new_endpoint, new_format=True)
        )

    def _companion_deletes(
        self, endpoint: Endpoint, deleting: List[Endpoint], deleted: Set[Tuple[str, str]]
    ) -> List[Endpoint]:
        deletes = []
        key = (
            self.mapper.to_txt_name(endpoint.dnsname, endpoint.record_type),
            endpoint.set_identifier,
        )
        if self._owns_companion(key) and key not in deleted:
            deletes.append(self._companions[key])
            deleted.add(key)

        legacy_key = (self.mapper.to_legacy_txt_name(endpoint.dnsname), endpoint.set_identifier)
        if legacy_key != key and self._owns_companion(legacy_key) and legacy_key not in deleted:
            deleting_keys = {ep.key for ep in deleting}
            # A legacy record covers every record type at the name
            still_owned = [
                ep
                for ep in self._owned
                if ep.normalized_name == endpoint.normalized_name
                and ep.set_identifier == endpoint.set_identifier
                and ep.key not in deleting_keys
            ]
            if not still_owned:
                deletes.append(self._companions[legacy_key])
                deleted.add(legacy_key)
        return deletes

    def _owns_companion(self, key: Tuple[str, str]) -> bool:
        labels = self._companion_labels.get(key)
        return labels is not None and labels.get(OWNER_LABEL_KEY) == self.txt_owner_id

    def _lookup_labels(
        self, endpoint: Endpoint, companion_labels: Dict[Tuple[str, str], Dict[str, str]]
    ) -> Optional[Dict[str, str]]:
        txt_name = self.mapper.to_txt_name(endpoint.dnsname, endpoint.record_type)
        names = [txt_name]
        legacy_name = self.mapper.to_legacy_txt_name(endpoint.dnsname)
        # TXT values sharing a record with a legacy ownership value are not covered by it
        if not (endpoint.record_type == RECORD_TYPE_TXT and legacy_name == endpoint.normalized_name):
            names.append(legacy_name)
        for name in names:
            labels = companion_labels.get((name, endpoint.set_identifier))
            if labels is not None:
                return labels
        return None

    def _decode_companion(self, name: str, content: str) -> Optional[Dict[str, str]]:
        try:
            labels, content_format = self.codec.decode(content)
        except InvalidHeritageError as e:
            # Plain TXT values are data, only broken ownership values are worth a warning
            if "heritage=" in content or ENCRYPTED_PREFIX in content:
                self.logger.warning(
                    f"Could not decode ownership record {name}: {e}. "
                    f"The records it covers are treated as foreign."
                )
            return None
        if content_format == FORMAT_LEGACY:
            self.logger.debug(f"Ownership record {name} uses the legacy format")
        return labels

    def _fold_shared_txt(self, changes: Changes) -> Changes:
        """
        Rewrites changes touching TXT records that hold ownership values into one
        change per provider record, so values sharing the record that are not
        ours survive.

        Args:
            changes: Changes built from single value records

        Returns:
            Changes: Changes addressing whole provider records
        """
        folded = Changes()
        values: Dict[EndpointKey, List[str]] = {}
        templates: Dict[EndpointKey, Endpoint] = {}

        for endpoint in changes.delete:
            if self._is_shared(endpoint):
                self._drop_values(values, endpoint)
            else:
                folded.delete.append(endpoint)
        for old_endpoint, new_endpoint in changes.updates():
            if self._is_shared(old_endpoint) and old_endpoint.key == new_endpoint.key:
                self._drop_values(values, old_endpoint)
                self._add_values(values, new_endpoint)
                templates[new_endpoint.key] = new_endpoint
            else:
                folded.update_old.append(old_endpoint)
                folded.update_new.append(new_endpoint)
        for endpoint in changes.create:
            if self._is_shared(endpoint):
                self._add_values(values, endpoint)
                templates.setdefault(endpoint.key, endpoint)
            else:
                folded.create.append(endpoint)

        for key, targets in values.items():
            record = self._txt_records[key]
            if set(targets) == set(record.targets):
                continue
            if not targets:
                folded.delete.append(record)
                continue
            replacement = templates.get(key, record).copy()
            replacement.targets = targets
            folded.update_old.append(record)
            folded.update_new.append(replacement)
        return folded

    def _is_shared(self, endpoint: Endpoint) -> bool:
        return endpoint.record_type == RECORD_TYPE_TXT and endpoint.key in self._txt_records

    def _drop_values(self, values: Dict[EndpointKey, List[str]], endpoint: Endpoint) -> None:
        targets = values.setdefault(endpoint.key, list(self._txt_records[endpoint.key].targets))
        values[endpoint.key] = [value for value in targets if value not in endpoint.targets]

    def _add_values(self, values: Dict[EndpointKey, List[str]], endpoint: Endpoint) -> None:
        targets = values.setdefault(endpoint.key, list(self._txt_records[endpoint.key].targets))
        for value in endpoint.targets:
            if value not in targets:
                targets.append(value)

    async def _provider_records(self) -> List[Endpoint]:
        async with self._cache_lock:
            now = time.monotonic()
            if (
                self.cache_interval
                and self._cache is not None
                and now - self._cache_time < self.cache_interval
            ):
                self.logger.debug("Using cached provider records")
                return [ep.copy() for ep in self._cache]
            records = await self.provider.records()
            if self.cache_interval:
                self._cache = [ep.copy() for ep in records]
                self._cache_time = now
            return records

    def _invalidate_cache(self) -> None:
        self._cache = None
        self._cache_time = 0.0

    def _patch_cache(self, changes: Changes) -> None:
        if self._cache is None:
            return
        removed = {ep.key for ep in changes.delete + changes.update_old}
        cache = [ep for ep in self._cache if ep.key not in removed]
        for endpoint in changes.create + changes.update_new:
            cache.append(endpoint.copy())
        self._cache = cache
