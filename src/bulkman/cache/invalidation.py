"""Cache invalidation hub for bulk mutations.

Given the entities a bulk job mutated, the hub works out every cache key pattern
that could now be stale and removes those entries, or bumps the scope generation
on caches that use generation tokens. Invalidation never fails the surrounding
operation: errors are logged and reported, not raised.

Classes:
    InvalidationTarget: One mutated entity and the operation applied to it
    InvalidationReport: Summary of one invalidation pass
    CacheInvalidationHub: Pattern-based invalidation across registered caches
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .interfaces import ICacheManager, IGenerationalCache
from .memory import scope_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvalidationTarget:
    """A mutated entity: ``{entity_kind, entity_id, related_keys}`` plus the operation."""

    entity_kind: str
    entity_id: Optional[str] = None
    operation: str = "update"
    related_keys: Tuple[str, ...] = ()


@dataclass
class InvalidationReport:
    """Result of CacheInvalidationHub.invalidate."""

    patterns: List[str] = field(default_factory=list)
    removed_entries: int = 0
    bumped_scopes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


class CacheInvalidationHub:
    """
    Invalidates cached data for mutated entities across one or more caches.

    Rules map ``entity_kind -> operation -> pattern templates``; ``{entity_id}``
    is replaced by the target id (``*`` when unknown). Related keys given by the
    caller are invalidated verbatim.
    """

    def __init__(self, caches: Optional[Sequence[ICacheManager]] = None):
        """
        Initialize the hub.

        Args:
            caches: Caches to keep consistent; more can be added with register_cache
        """
        self._caches: List[ICacheManager] = list(caches or [])
        self.invalidation_rules = self._load_invalidation_rules()

    def register_cache(self, cache: ICacheManager):
        """Add a cache to the set the hub keeps consistent."""
        if cache not in self._caches:
            self._caches.append(cache)

    @property
    def caches(self) -> List[ICacheManager]:
        return list(self._caches)

    def invalidate(self, targets: Iterable[InvalidationTarget]) -> InvalidationReport:
        """
        Invalidate every cache entry that could be stale after the given mutations.

        Args:
            targets: Mutated entities; duplicates are collapsed

        Returns:
            InvalidationReport describing what was done
        """
        report = InvalidationReport()

        unique_targets: List[InvalidationTarget] = []
        seen_targets: Set[InvalidationTarget] = set()
        for target in targets:
            if target not in seen_targets:
                seen_targets.add(target)
                unique_targets.append(target)

        if not unique_targets:
            return report

        patterns: List[str] = []
        for target in unique_targets:
            patterns.extend(self.get_invalidation_patterns(target))
        report.patterns = self._dedupe(patterns)

        scopes = self._dedupe(scope_of(pattern) for pattern in report.patterns)

        for cache in self._caches:
            if isinstance(cache, IGenerationalCache):
                for scope in scopes:
                    try:
                        cache.bump_generation(scope)
                        report.bumped_scopes.append(scope)
                    except Exception as e:
                        message = f"Failed to bump generation for scope {scope}: {e}"
                        logger.warning(message)
                        report.errors.append(message)
                continue

            for pattern in report.patterns:
                try:
                    removed = cache.invalidate(pattern)
                    report.removed_entries += removed or 0
                except Exception as e:
                    message = f"Failed to invalidate cache pattern {pattern}: {e}"
                    logger.warning(message)
                    report.errors.append(message)

        logger.debug(
            f"Cache invalidation for {len(unique_targets)} entities: "
            f"{len(report.patterns)} patterns, {report.removed_entries} entries removed, "
            f"{len(report.bumped_scopes)} generations bumped"
        )
        return report

    def invalidate_entity(
        self,
        entity_kind: str,
        entity_id: Optional[str] = None,
        operation: str = "update",
        related_keys: Sequence[str] = (),
    ) -> InvalidationReport:
        """Invalidate cached data for a single entity."""
        target = InvalidationTarget(
            entity_kind=entity_kind,
            entity_id=entity_id,
            operation=operation,
            related_keys=tuple(related_keys),
        )
        return self.invalidate([target])

    def get_invalidation_patterns(self, target: InvalidationTarget) -> List[str]:
        """
        Generate invalidation patterns for a mutated entity.

        Args:
            target: Mutated entity

        Returns:
            Ordered, de-duplicated list of cache key patterns
        """
        entity_id = target.entity_id or "*"
        kind_rules = self.invalidation_rules.get(target.entity_kind)

        if kind_rules is None:
            templates = ["{entity_kind}:*:{entity_id}", "{entity_kind}:list:*"]
        else:
            templates = kind_rules.get(target.operation, kind_rules.get("update", []))

        patterns = [
            template.format(entity_kind=target.entity_kind, entity_id=entity_id)
            for template in templates
        ]
        patterns.extend(target.related_keys)
        return self._dedupe(patterns)

    def _load_invalidation_rules(self) -> Dict[str, Dict[str, List[str]]]:
        """
        Load invalidation rules for each entity kind and operation.

        Returns:
            Dictionary mapping entity kinds and operations to pattern templates
        """
        return {
            "user": {
                "create": [
                    "user:list:*",
                    "department:users:*",
                ],
                "update": [
                    "user:describe:{entity_id}",
                    "user:list:*",
                ],
                "deactivate": [
                    "user:describe:{entity_id}",
                    "user:list:*",
                    "user:workgroups:{entity_id}",
                    "workgroup:members:*",
                    "department:users:*",
                ],
                "role_change": [
                    "user:describe:{entity_id}",
                    "user:roles:{entity_id}",
                    "user:list:*",
                ],
            },
            "workgroup": {
                "create": [
                    "workgroup:list:*",
                    "period:workgroups:*",
                ],
                "update": [
                    "workgroup:describe:{entity_id}",
                    "workgroup:list:*",
                ],
                "archive": [
                    "workgroup:describe:{entity_id}",
                    "workgroup:list:*",
                    "workgroup:members:{entity_id}",
                    "user:workgroups:*",
                ],
                "restore": [
                    "workgroup:describe:{entity_id}",
                    "workgroup:list:*",
                    "workgroup:members:{entity_id}",
                    "user:workgroups:*",
                ],
                "add_member": [
                    "workgroup:members:{entity_id}",
                    "workgroup:describe:{entity_id}",
                ],
                "remove_member": [
                    "workgroup:members:{entity_id}",
                    "workgroup:describe:{entity_id}",
                ],
                "migrate": [
                    "workgroup:describe:{entity_id}",
                    "workgroup:list:*",
                    "period:workgroups:*",
                ],
            },
            "department": {
                "update": [
                    "department:describe:{entity_id}",
                    "department:users:{entity_id}",
                ],
            },
            "period": {
                "update": [
                    "period:describe:{entity_id}",
                    "period:workgroups:{entity_id}",
                ],
            },
        }

    @staticmethod
    def _dedupe(values: Iterable[str]) -> List[str]:
        # Remove duplicates while preserving order
        seen = set()
        unique_values = []
        for value in values:
            if value not in seen:
                seen.add(value)
                unique_values.append(value)
        return unique_values
