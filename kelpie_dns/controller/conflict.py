"""
Conflict resolution for desired endpoints.

Several sources may ask for the same record. Before planning, every group of
desired endpoints sharing an identity key is collapsed into a single endpoint.
"""

import logging
from typing import Callable, List, Tuple

from kelpie_dns.models.models import Endpoint


def resource_first(endpoint: Endpoint) -> Tuple:
    """
    Default tie-break: the lexicographically first originating resource wins,
    then the first sorted target list, then the lowest TTL. Provider specific
    properties and labels break any remaining tie.
    """
    return (
        endpoint.resource,
        sorted(endpoint.targets),
        endpoint.record_ttl or 0,
        sorted((p.name, p.value) for p in endpoint.provider_specific),
        sorted(endpoint.labels.items()),
    )


class ConflictResolver:
    """
    Collapses desired endpoints that share an identity key.

    Multi-value record types merge their targets into the winning endpoint.
    Single-value record types keep the winning endpoint and drop the rest.
    """

    def __init__(self, sort_key: Callable[[Endpoint], Tuple] = resource_first):
        self.sort_key = sort_key
        self.logger = logging.getLogger("kelpie-dns.plan.conflict")

    def resolve(self, candidates: List[Endpoint]) -> Endpoint:
        """
        Pick or build the single endpoint to use for a key.

        Args:
            candidates: Desired endpoints sharing one identity key

        Returns:
            Endpoint: The resolved endpoint
        """
        ordered = sorted(candidates, key=self.sort_key)
        winner = ordered[0].copy()
        if len(ordered) == 1:
            return winner

        if winner.is_single_value():
            losers = [c for c in ordered[1:] if not c.targets_equal(winner)]
            if losers:
                self.logger.warning(
                    f"Conflicting desired endpoints for {winner.id}: keeping "
                    f"{winner.targets} from '{winner.resource or 'unknown'}', discarding "
                    + ", ".join(
                        f"{c.targets} from '{c.resource or 'unknown'}'" for c in losers
                    )
                )
            return winner

        merged = sorted({target for c in ordered for target in c.targets})
        if merged != sorted(set(winner.targets)):
            self.logger.info(
                f"Merging targets of {len(ordered)} desired endpoints for {winner.id}: {merged}"
            )
        winner.targets = merged
        return winner
