"""
Plan module for Kelpie-DNS.

This module is responsible for calculating the changes needed to bring the current state
in line with the desired state.
"""

import logging
from typing import Dict, Iterable, List, Optional, Union

from kelpie_dns.controller.conflict import ConflictResolver
from kelpie_dns.exceptions import ConfigError, InvalidEndpointError
from kelpie_dns.models.domain_filter import DomainFilter
from kelpie_dns.models.models import (
    DEFAULT_MANAGED_RECORD_TYPES,
    Changes,
    Endpoint,
    EndpointKey,
)


class SyncPolicy:
    """Allows creates, updates and deletes."""

    name = "sync"

    def apply(self, changes: Changes) -> Changes:
        return changes


class UpsertOnlyPolicy:
    """Allows creates and updates, never deletes."""

    name = "upsert-only"

    def apply(self, changes: Changes) -> Changes:
        return Changes(
            create=changes.create,
            update_old=changes.update_old,
            update_new=changes.update_new,
        )


class CreateOnlyPolicy:
    """Only creates records that do not exist yet."""

    name = "create-only"

    def apply(self, changes: Changes) -> Changes:
        return Changes(create=changes.create)


POLICIES = {
    SyncPolicy.name: SyncPolicy(),
    UpsertOnlyPolicy.name: UpsertOnlyPolicy(),
    CreateOnlyPolicy.name: CreateOnlyPolicy(),
}


def get_policy(name: str):
    """
    Look up a policy by name.

    Args:
        name: Policy name (sync, upsert-only, create-only)

    Returns:
        The policy object

    Raises:
        ConfigError: If the policy is unknown
    """
    try:
        return POLICIES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown policy '{name}', expected one of {sorted(POLICIES)}"
        ) from None


class Plan:
    """
    Plan calculates the changes needed to bring the current state in line with the desired state.
    """

    def __init__(
        self,
        current: List[Endpoint],
        desired: List[Endpoint],
        policy: Union[str, object] = "sync",
        domain_filter: Optional[DomainFilter] = None,
        managed_types: Optional[Iterable[str]] = None,
        owner_id: str = "default",
        resolver: Optional[ConflictResolver] = None,
        ordered_provider_specific: bool = False,
    ):
        """
        Initialize a Plan.

        Args:
            current: Current endpoints, owned ones labelled by the registry
            desired: Desired endpoints
            policy: Synchronization policy (sync, upsert-only, create-only)
            domain_filter: Names outside this filter are ignored
            managed_types: Record types this plan may touch
            owner_id: Owner ID marking records as ours
            resolver: Conflict resolver for colliding desired endpoints
            ordered_provider_specific: Whether provider-specific order matters
        """
        self.current = current
        self.desired = desired
        self.policy = get_policy(policy) if isinstance(policy, str) else policy
        self.domain_filter = domain_filter or DomainFilter()
        self.managed_types = set(
            managed_types if managed_types is not None else DEFAULT_MANAGED_RECORD_TYPES
        )
        self.owner_id = owner_id
        self.resolver = resolver or ConflictResolver()
        self.ordered_provider_specific = ordered_provider_specific
        self.errors: List[InvalidEndpointError] = []
        self.logger = logging.getLogger("kelpie-dns.plan")

    def in_scope(self, endpoint: Endpoint) -> bool:
        if endpoint.record_type not in self.managed_types:
            return False
        return self.domain_filter.match(endpoint.dnsname)

    def is_owned(self, endpoint: Endpoint) -> bool:
        return bool(self.owner_id) and endpoint.owner == self.owner_id

    def calculate_changes(self) -> Changes:
        """
        Calculate the changes needed to bring the current state in line with the desired state.

        Returns:
            Changes: Changes to be applied
        """
        changes = Changes()
        current_by_key = self._index_current()
        desired_by_key = self._index_desired()

        for key in sorted(desired_by_key):
            desired_endpoint = desired_by_key[key]
            current_endpoint = current_by_key.get(key)

            if current_endpoint is None:
                self.logger.info(f"Endpoint {desired_endpoint.id} will be created")
                changes.create.append(desired_endpoint)
                continue

            if current_endpoint.same_record(
                desired_endpoint, self.ordered_provider_specific
            ):
                self.logger.debug(f"Endpoint {desired_endpoint.id} is up-to-date")
                continue

            if not self.is_owned(current_endpoint):
                self.logger.warning(
                    f"Endpoint {desired_endpoint.id} differs from the existing record, but the "
                    f"record is not owned by '{self.owner_id}'. Leaving it untouched."
                )
                continue

            self.logger.info(f"Endpoint {desired_endpoint.id} needs update")
            new_endpoint = desired_endpoint.copy()
            new_endpoint.labels = {**current_endpoint.labels, **desired_endpoint.labels}
            changes.update_old.append(current_endpoint)
            changes.update_new.append(new_endpoint)

        for key in sorted(current_by_key):
            if key in desired_by_key:
                continue
            current_endpoint = current_by_key[key]
            if not self.is_owned(current_endpoint):
                self.logger.debug(
                    f"Endpoint {current_endpoint.id} is not desired but not owned by "
                    f"'{self.owner_id}'. Leaving it untouched."
                )
                continue
            self.logger.debug(
                f"Endpoint {current_endpoint.id} identified as no longer desired."
            )
            changes.delete.append(current_endpoint)

        return self._apply_policy(changes)

    def _apply_policy(self, changes: Changes) -> Changes:
        gated = self.policy.apply(changes)
        if len(gated.delete) < len(changes.delete):
            self.logger.info(
                f"Policy '{self.policy.name}' skipped {len(changes.delete)} deletes: "
                f"{[ep.id for ep in changes.delete]}"
            )
        if len(gated.update_new) < len(changes.update_new):
            self.logger.info(
                f"Policy '{self.policy.name}' skipped {len(changes.update_new)} updates: "
                f"{[ep.id for ep in changes.update_new]}"
            )
        return gated

    def _index_current(self) -> Dict[EndpointKey, Endpoint]:
        current_by_key: Dict[EndpointKey, Endpoint] = {}
        for endpoint in self.current:
            if not self.in_scope(endpoint):
                continue
            existing = current_by_key.get(endpoint.key)
            if existing is not None and self.is_owned(existing):
                self.logger.debug(
                    f"Duplicate current endpoint {endpoint.id}, keeping the owned one"
                )
                continue
            current_by_key[endpoint.key] = endpoint
        return current_by_key

    def _index_desired(self) -> Dict[EndpointKey, Endpoint]:
        grouped: Dict[EndpointKey, List[Endpoint]] = {}
        for endpoint in self.desired:
            if not self.in_scope(endpoint):
                self.logger.debug(f"Endpoint {endpoint.id} is out of scope, ignoring")
                continue
            reason = endpoint.validate()
            if reason:
                error = InvalidEndpointError(
                    f"Dropping invalid endpoint {endpoint.id}: {reason}", endpoint.id
                )
                self.logger.error(str(error))
                self.errors.append(error)
                continue
            normalized = endpoint.normalized()
            grouped.setdefault(normalized.key, []).append(normalized)

        return {key: self.resolver.resolve(group) for key, group in grouped.items()}
