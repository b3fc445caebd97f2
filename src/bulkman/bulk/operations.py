"""Operation kinds the orchestrator can run in bulk.

Each handler knows how to coerce raw request items into its payload type,
validate the whole request before anything is dispatched, perform the action
for one item, and name the cache entries a successful item makes stale.

Classes:
    OperationKind: Supported bulk operation kinds
    OnboardingPlan, RoleChange, MembershipChange: Item payloads
    OperationContext: Collaborators and parameters available to a handler
    OperationHandler: Base class for operation kinds
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from ..cache.invalidation import InvalidationTarget
from ..domain.entities import UserRole, WorkgroupStatus
from ..domain.interfaces import DomainServices
from .exceptions import ValidationError
from .models import ItemError, ItemOutcome, PartialSuccessPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")
ItemResult = Union[ItemOutcome, ItemError]


class OperationKind(str, Enum):
    """Bulk operation kinds accepted by BulkOrchestrator.run_bulk."""

    ONBOARD_USERS = "onboard_users"
    DEACTIVATE_USERS = "deactivate_users"
    CHANGE_ROLES = "change_roles"
    ADD_MEMBERS = "add_members"
    REMOVE_MEMBERS = "remove_members"
    ARCHIVE_WORKGROUPS = "archive_workgroups"
    RESTORE_WORKGROUPS = "restore_workgroups"
    MIGRATE_WORKGROUPS = "migrate_workgroups"
    CONSOLIDATE_INACTIVE_WORKGROUPS = "consolidate_inactive_workgroups"
    ARCHIVE_PERIOD_WORKGROUPS = "archive_period_workgroups"
    CREATE_PERIOD_WORKGROUPS = "create_period_workgroups"


@dataclass
class OnboardingPlan:
    """One account to create and the workgroups it joins."""

    upn: str
    first_name: str
    last_name: str
    department_id: Optional[str] = None
    role: Union[UserRole, str] = UserRole.MEMBER
    workgroup_ids: List[str] = field(default_factory=list)


@dataclass
class RoleChange:
    user_id: str
    new_role: Union[UserRole, str]


@dataclass
class MembershipChange:
    workgroup_id: str
    user_id: str
    role: str = "member"


def _from_mapping(cls, value: Any, required: Sequence[str]):
    """Build a payload dataclass from a dict, leaving missing required fields empty."""
    if isinstance(value, cls) or not isinstance(value, dict):
        return value
    known = {name: value[name] for name in cls.__dataclass_fields__ if name in value}
    for name in required:
        known.setdefault(name, "")
    return cls(**known)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_role(value: Union[UserRole, str, None]) -> Optional[UserRole]:
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(str(value).lower())
    except ValueError:
        return None


class OperationContext:
    """Collaborators and per-call parameters handed to operation handlers."""

    def __init__(
        self,
        services: DomainServices,
        session: Optional[Any] = None,
        parameters: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ):
        """
        Initialize the context.

        Args:
            services: Domain service container
            session: ResilientSessionManager routing remote calls, or None for direct calls
            parameters: Operation parameters from RunOptions
            actor: Identity running the operation
        """
        self.services = services
        self.session = session
        self.parameters = dict(parameters or {})
        self.actor = actor

    async def call(self, name: str, action: Callable[[], Awaitable[T]]) -> T:
        """Run one domain-service call, through the session manager when one is configured."""
        if self.session is None:
            return await action()
        return await self.session.execute_with_resilience(action, operation_name=name)


class OperationHandler(ABC):
    """Base class for one bulk operation kind."""

    kind: OperationKind
    entity_kind: str = "entity"
    requires_remote: bool = True
    resolves_targets: bool = False
    default_policy: PartialSuccessPolicy = PartialSuccessPolicy.strict()

    def coerce_item(self, item: Any) -> Any:
        """Convert a raw request item into this handler's payload type."""
        return item

    def describe_item(self, item: Any) -> Optional[str]:
        """Return the entity id an item refers to, used in errors and progress."""
        if isinstance(item, str):
            return item
        return None

    async def resolve_items(self, items: List[Any], ctx: OperationContext) -> List[Any]:
        """
        Select the items to process when the handler picks its own targets.

        Only called for handlers with ``resolves_targets`` set.

        Raises:
            ValidationError: If the selection parameters are invalid
        """
        return items

    @abstractmethod
    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        """
        Check the whole request before any item is dispatched.

        Returns:
            One ItemError per invalid item; an empty list means the request is valid
        """
        pass

    @abstractmethod
    async def execute_item(self, item: Any, ctx: OperationContext) -> ItemResult:
        """Perform the action for one item."""
        pass

    def chunk_action(self, ctx: OperationContext) -> Optional[Callable[[List[Any]], Awaitable[List[ItemResult]]]]:
        """Return a per-chunk action when the remote API batches this operation itself."""
        return None

    def invalidation_targets(self, item: Any, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [InvalidationTarget(self.entity_kind, outcome.entity_id)]

    def _error(self, message: str, entity_id: Optional[str] = None, error_type: Optional[str] = None) -> ItemError:
        return ItemError(operation=self.kind.value, message=message, entity_id=entity_id, error_type=error_type)

    def _outcome(self, entity_id: str, message: str, entity_name: Optional[str] = None) -> ItemOutcome:
        return ItemOutcome(operation=self.kind.value, entity_id=entity_id, message=message, entity_name=entity_name)

    def _reject(self, message: str, entity_id: Optional[str] = None) -> ValidationError:
        return ValidationError(message, self.kind.value, [self._error(message, entity_id, "ValidationError")])

    def _require_no_items(self, items: List[Any]):
        if items:
            raise self._reject(f"{self.kind.value} selects its own targets and does not accept items")

    def _check_ids(self, items: List[Any], label: str) -> List[ItemError]:
        """Report blank and duplicate id items."""
        errors = []
        seen = set()
        for index, item in enumerate(items, start=1):
            if not isinstance(item, str) or not item.strip():
                errors.append(self._error(f"Item {index}: {label} id is required", error_type="ValidationError"))
                continue
            if item in seen:
                errors.append(self._error(f"Duplicate {label} id in request: {item}", item, "ValidationError"))
            seen.add(item)
        return errors


class OnboardUsersHandler(OperationHandler):
    """Create accounts and add them to their workgroups."""

    kind = OperationKind.ONBOARD_USERS
    entity_kind = "user"
    default_policy = PartialSuccessPolicy.majority()

    REQUIRED_FIELDS = ("upn", "first_name", "last_name")

    def coerce_item(self, item: Any) -> Any:
        return _from_mapping(OnboardingPlan, item, self.REQUIRED_FIELDS)

    def describe_item(self, item: Any) -> Optional[str]:
        return getattr(item, "upn", None) or None

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        errors: List[ItemError] = []
        seen_upns = set()
        department_cache: Dict[str, bool] = {}
        workgroup_cache: Dict[str, bool] = {}

        for index, plan in enumerate(items, start=1):
            if not isinstance(plan, OnboardingPlan):
                errors.append(self._error(f"Item {index}: unsupported item type {type(plan).__name__}"))
                continue

            missing = [name for name in self.REQUIRED_FIELDS if not str(getattr(plan, name) or "").strip()]
            if missing:
                errors.append(
                    self._error(
                        f"Item {index}: missing required field(s): {', '.join(missing)}",
                        plan.upn or None,
                        "ValidationError",
                    )
                )
                continue

            upn = plan.upn.strip().lower()
            if upn in seen_upns:
                errors.append(self._error(f"Duplicate UPN in request: {plan.upn}", plan.upn, "ValidationError"))
                continue
            seen_upns.add(upn)

            if _parse_role(plan.role) is None:
                errors.append(self._error(f"Item {index}: invalid role {plan.role!r}", plan.upn, "ValidationError"))
                continue

            existing = await ctx.call("get_user_by_upn", lambda: ctx.services.users.get_user_by_upn(plan.upn))
            if existing is not None:
                errors.append(self._error(f"Account already exists: {plan.upn}", plan.upn, "ValidationError"))
                continue

            if plan.department_id:
                department_id = plan.department_id
                if department_id not in department_cache:
                    department = await ctx.call(
                        "get_department_by_id",
                        lambda: ctx.services.departments.get_department_by_id(department_id),
                    )
                    department_cache[department_id] = department is not None and department.is_active
                if not department_cache[department_id]:
                    errors.append(
                        self._error(f"Department not found: {department_id}", plan.upn, "ValidationError")
                    )
                    continue

            for workgroup_id in plan.workgroup_ids:
                if workgroup_id not in workgroup_cache:
                    workgroup = await ctx.call(
                        "get_workgroup_by_id",
                        lambda: ctx.services.workgroups.get_workgroup_by_id(workgroup_id),
                    )
                    workgroup_cache[workgroup_id] = workgroup is not None and workgroup.is_active
                if not workgroup_cache[workgroup_id]:
                    errors.append(
                        self._error(f"Workgroup not found or archived: {workgroup_id}", plan.upn, "ValidationError")
                    )
                    break

        return errors

    async def execute_item(self, plan: OnboardingPlan, ctx: OperationContext) -> ItemResult:
        role = _parse_role(plan.role)
        user = await ctx.call(
            "create_user",
            lambda: ctx.services.users.create_user(
                plan.upn, plan.first_name, plan.last_name, role, plan.department_id
            ),
        )
        if user is None:
            return self._error(f"Account could not be created: {plan.upn}", plan.upn)

        failed_groups = []
        for workgroup_id in plan.workgroup_ids:
            try:
                added = await ctx.call(
                    "add_member", lambda: ctx.services.workgroups.add_member(workgroup_id, user.id)
                )
            except Exception as e:
                logger.warning(f"Could not add {plan.upn} to workgroup {workgroup_id}: {e}")
                added = False
            if not added:
                failed_groups.append(workgroup_id)

        message = f"Created account {plan.upn}"
        if plan.workgroup_ids:
            message += f" and added to {len(plan.workgroup_ids) - len(failed_groups)} workgroup(s)"
        if failed_groups:
            message += f"; could not join: {', '.join(failed_groups)}"
        return self._outcome(user.id, message, plan.upn)

    def invalidation_targets(self, plan: OnboardingPlan, outcome: ItemOutcome) -> List[InvalidationTarget]:
        targets = [InvalidationTarget("user", outcome.entity_id, "create")]
        targets.extend(
            InvalidationTarget(
                "workgroup", workgroup_id, "add_member", related_keys=(f"user:workgroups:{outcome.entity_id}",)
            )
            for workgroup_id in plan.workgroup_ids
        )
        return targets


class DeactivateUsersHandler(OperationHandler):
    """Deactivate accounts, optionally handing their workgroups to a fallback owner."""

    kind = OperationKind.DEACTIVATE_USERS
    entity_kind = "user"
    default_policy = PartialSuccessPolicy.threshold(15)

    def coerce_item(self, item: Any) -> Any:
        return item.strip() if isinstance(item, str) else item

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        errors = self._check_ids(items, "user")
        fallback_owner_id = ctx.parameters.get("fallback_owner_id")

        if fallback_owner_id:
            fallback = await ctx.call(
                "get_user_by_id", lambda: ctx.services.users.get_user_by_id(fallback_owner_id)
            )
            if fallback is None or not fallback.is_active:
                errors.append(
                    self._error(
                        f"Fallback owner not found or inactive: {fallback_owner_id}",
                        fallback_owner_id,
                        "ValidationError",
                    )
                )
            if fallback_owner_id in items:
                errors.append(
                    self._error(
                        "Fallback owner cannot be deactivated in the same request",
                        fallback_owner_id,
                        "ValidationError",
                    )
                )

        for user_id in dict.fromkeys(item for item in items if isinstance(item, str) and item):
            user = await ctx.call("get_user_by_id", lambda: ctx.services.users.get_user_by_id(user_id))
            if user is None:
                errors.append(self._error(f"User not found: {user_id}", user_id, "ValidationError"))

        return errors

    async def execute_item(self, user_id: str, ctx: OperationContext) -> ItemResult:
        user = await ctx.call("get_user_by_id", lambda: ctx.services.users.get_user_by_id(user_id))
        if user is None:
            return self._error(f"User not found: {user_id}", user_id)
        if not user.is_active:
            return self._outcome(user_id, "Account already deactivated", user.upn)

        transferred = 0
        fallback_owner_id = ctx.parameters.get("fallback_owner_id")
        if fallback_owner_id:
            owned = await ctx.call(
                "get_workgroups_owned_by", lambda: ctx.services.workgroups.get_workgroups_owned_by(user_id)
            )
            for workgroup in owned or []:
                moved = await ctx.call(
                    "transfer_ownership",
                    lambda: ctx.services.workgroups.transfer_ownership(workgroup.id, fallback_owner_id),
                )
                if not moved:
                    return self._error(
                        f"Could not transfer ownership of workgroup {workgroup.id} to {fallback_owner_id}",
                        user_id,
                    )
                transferred += 1

        deactivated = await ctx.call("deactivate_user", lambda: ctx.services.users.deactivate_user(user_id))
        if not deactivated:
            return self._error(f"Account could not be deactivated: {user.upn}", user_id)

        message = "Account deactivated"
        if transferred:
            message += f"; {transferred} workgroup(s) transferred to {fallback_owner_id}"
        return self._outcome(user_id, message, user.upn)

    def invalidation_targets(self, user_id: str, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [
            InvalidationTarget("user", user_id, "deactivate"),
            InvalidationTarget("workgroup", None, "update", related_keys=(f"user:owned:{user_id}",)),
        ]


class ChangeRolesHandler(OperationHandler):
    """Change account roles and push them to the remote directory."""

    kind = OperationKind.CHANGE_ROLES
    entity_kind = "user"

    def coerce_item(self, item: Any) -> Any:
        return _from_mapping(RoleChange, item, ("user_id", "new_role"))

    def describe_item(self, item: Any) -> Optional[str]:
        return getattr(item, "user_id", None) or None

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        errors = []
        seen = set()
        for index, change in enumerate(items, start=1):
            if not isinstance(change, RoleChange) or not change.user_id:
                errors.append(self._error(f"Item {index}: user_id is required", error_type="ValidationError"))
                continue
            if _parse_role(change.new_role) is None:
                errors.append(
                    self._error(f"Invalid role {change.new_role!r}", change.user_id, "ValidationError")
                )
                continue
            if change.user_id in seen:
                errors.append(
                    self._error(f"Duplicate user id in request: {change.user_id}", change.user_id, "ValidationError")
                )
                continue
            seen.add(change.user_id)

            user = await ctx.call("get_user_by_id", lambda: ctx.services.users.get_user_by_id(change.user_id))
            if user is None:
                errors.append(self._error(f"User not found: {change.user_id}", change.user_id, "ValidationError"))
        return errors

    async def execute_item(self, change: RoleChange, ctx: OperationContext) -> ItemResult:
        role = _parse_role(change.new_role)
        user = await ctx.call("get_user_by_id", lambda: ctx.services.users.get_user_by_id(change.user_id))
        if user is None:
            return self._error(f"User not found: {change.user_id}", change.user_id)
        if user.role == role:
            return self._outcome(user.id, f"Role already {role.value}", user.upn)

        updated = await ctx.call("update_user", lambda: ctx.services.users.update_user(replace(user, role=role)))
        if not updated:
            return self._error(f"Account could not be updated: {user.upn}", user.id)

        if ctx.session is not None:
            command = await ctx.session.execute_command_with_retry(
                "set_user_role", {"user_id": user.id, "role": role.value}
            )
            if not command.success:
                return self._error(
                    f"Role saved but remote update failed: {command.error}",
                    user.id,
                    "CircuitOpenFault" if command.circuit_open else "RemoteCommandFailed",
                )

        return self._outcome(user.id, f"Role changed from {user.role.value} to {role.value}", user.upn)

    def invalidation_targets(self, change: RoleChange, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [InvalidationTarget("user", change.user_id, "role_change")]


class MembershipHandler(OperationHandler):
    """Add accounts to, or remove them from, workgroups."""

    entity_kind = "workgroup"

    def __init__(self, adding: bool):
        self.adding = adding
        self.kind = OperationKind.ADD_MEMBERS if adding else OperationKind.REMOVE_MEMBERS

    def coerce_item(self, item: Any) -> Any:
        return _from_mapping(MembershipChange, item, ("workgroup_id", "user_id"))

    def describe_item(self, item: Any) -> Optional[str]:
        if isinstance(item, MembershipChange):
            return f"{item.workgroup_id}/{item.user_id}"
        return None

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        errors = []
        workgroups = {}
        users = {}
        for index, change in enumerate(items, start=1):
            if not isinstance(change, MembershipChange) or not change.workgroup_id or not change.user_id:
                errors.append(
                    self._error(
                        f"Item {index}: workgroup_id and user_id are required", error_type="ValidationError"
                    )
                )
                continue
            label = self.describe_item(change)

            if change.workgroup_id not in workgroups:
                workgroups[change.workgroup_id] = await ctx.call(
                    "get_workgroup_by_id",
                    lambda: ctx.services.workgroups.get_workgroup_by_id(change.workgroup_id),
                )
            workgroup = workgroups[change.workgroup_id]
            if workgroup is None:
                errors.append(self._error(f"Workgroup not found: {change.workgroup_id}", label, "ValidationError"))
                continue
            if self.adding and not workgroup.is_active:
                errors.append(
                    self._error(f"Workgroup is archived: {change.workgroup_id}", label, "ValidationError")
                )
                continue

            if change.user_id not in users:
                users[change.user_id] = await ctx.call(
                    "get_user_by_id", lambda: ctx.services.users.get_user_by_id(change.user_id)
                )
            if users[change.user_id] is None:
                errors.append(self._error(f"User not found: {change.user_id}", label, "ValidationError"))
        return errors

    async def execute_item(self, change: MembershipChange, ctx: OperationContext) -> ItemResult:
        label = self.describe_item(change)
        if self.adding:
            done = await ctx.call(
                "add_member",
                lambda: ctx.services.workgroups.add_member(change.workgroup_id, change.user_id, change.role),
            )
            verb = "added to"
        else:
            done = await ctx.call(
                "remove_member",
                lambda: ctx.services.workgroups.remove_member(change.workgroup_id, change.user_id),
            )
            verb = "removed from"

        if not done:
            return self._error(f"User {change.user_id} could not be {verb} workgroup {change.workgroup_id}", label)
        return self._outcome(label, f"User {change.user_id} {verb} workgroup {change.workgroup_id}")

    def invalidation_targets(self, change: MembershipChange, outcome: ItemOutcome) -> List[InvalidationTarget]:
        operation = "add_member" if self.adding else "remove_member"
        return [
            InvalidationTarget(
                "workgroup", change.workgroup_id, operation, related_keys=(f"user:workgroups:{change.user_id}",)
            )
        ]


class ArchiveWorkgroupsHandler(OperationHandler):
    """Archive workgroups, in one remote command per chunk when the remote API supports it."""

    kind = OperationKind.ARCHIVE_WORKGROUPS
    entity_kind = "workgroup"
    default_policy = PartialSuccessPolicy.threshold(10)

    DEFAULT_REASON = "Archived by bulk operation"

    def _reason(self, ctx: OperationContext) -> str:
        return ctx.parameters.get("reason") or self.DEFAULT_REASON

    def coerce_item(self, item: Any) -> Any:
        return item.strip() if isinstance(item, str) else item

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        errors = self._check_ids(items, "workgroup")
        for workgroup_id in dict.fromkeys(item for item in items if isinstance(item, str) and item):
            workgroup = await ctx.call(
                "get_workgroup_by_id", lambda: ctx.services.workgroups.get_workgroup_by_id(workgroup_id)
            )
            if workgroup is None:
                errors.append(self._error(f"Workgroup not found: {workgroup_id}", workgroup_id, "ValidationError"))
            elif workgroup.status == WorkgroupStatus.ARCHIVED:
                errors.append(
                    self._error(f"Workgroup already archived: {workgroup_id}", workgroup_id, "ValidationError")
                )
        return errors

    async def execute_item(self, workgroup_id: str, ctx: OperationContext) -> ItemResult:
        reason = self._reason(ctx)
        archived = await ctx.call(
            "archive_workgroup", lambda: ctx.services.workgroups.archive_workgroup(workgroup_id, reason)
        )
        if not archived:
            return self._error(f"Workgroup could not be archived: {workgroup_id}", workgroup_id)
        return self._outcome(workgroup_id, f"Workgroup archived ({reason})")

    def chunk_action(self, ctx: OperationContext):
        bulk_commands = ctx.services.bulk_commands
        if bulk_commands is None:
            return None
        reason = self._reason(ctx)

        async def archive_chunk(workgroup_ids: List[str]) -> List[ItemResult]:
            result = await ctx.call(
                "execute_bulk_command",
                lambda: bulk_commands.execute_bulk_command(
                    list(workgroup_ids),
                    {"command": OperationKind.ARCHIVE_WORKGROUPS.value, "reason": reason, "actor": ctx.actor},
                ),
            )
            succeeded = {outcome.entity_id: outcome for outcome in result.successful_operations}
            failed = {error.entity_id: error for error in result.errors if error.entity_id}

            chunk_results: List[ItemResult] = []
            for workgroup_id in workgroup_ids:
                if workgroup_id in succeeded:
                    outcome = succeeded[workgroup_id]
                    chunk_results.append(self._outcome(workgroup_id, outcome.message or "Workgroup archived"))
                elif workgroup_id in failed:
                    chunk_results.append(self._error(failed[workgroup_id].message, workgroup_id))
                else:
                    chunk_results.append(
                        self._error(result.error_message or "No result returned by bulk command", workgroup_id)
                    )
            return chunk_results

        return archive_chunk

    def invalidation_targets(self, workgroup_id: str, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [InvalidationTarget("workgroup", workgroup_id, "archive")]


class RestoreWorkgroupsHandler(OperationHandler):
    """Restore archived workgroups."""

    kind = OperationKind.RESTORE_WORKGROUPS
    entity_kind = "workgroup"
    default_policy = PartialSuccessPolicy.threshold(10)

    def coerce_item(self, item: Any) -> Any:
        return item.strip() if isinstance(item, str) else item

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        errors = self._check_ids(items, "workgroup")
        for workgroup_id in dict.fromkeys(item for item in items if isinstance(item, str) and item):
            workgroup = await ctx.call(
                "get_workgroup_by_id", lambda: ctx.services.workgroups.get_workgroup_by_id(workgroup_id)
            )
            if workgroup is None:
                errors.append(self._error(f"Workgroup not found: {workgroup_id}", workgroup_id, "ValidationError"))
            elif workgroup.status != WorkgroupStatus.ARCHIVED:
                errors.append(self._error(f"Workgroup is not archived: {workgroup_id}", workgroup_id, "ValidationError"))
        return errors

    async def execute_item(self, workgroup_id: str, ctx: OperationContext) -> ItemResult:
        restored = await ctx.call(
            "restore_workgroup", lambda: ctx.services.workgroups.restore_workgroup(workgroup_id)
        )
        if not restored:
            return self._error(f"Workgroup could not be restored: {workgroup_id}", workgroup_id)
        return self._outcome(workgroup_id, "Workgroup restored")

    def invalidation_targets(self, workgroup_id: str, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [InvalidationTarget("workgroup", workgroup_id, "restore")]


class MigrateWorkgroupsHandler(OperationHandler):
    """Clone workgroups into another period, optionally archiving the source."""

    kind = OperationKind.MIGRATE_WORKGROUPS
    entity_kind = "workgroup"

    def coerce_item(self, item: Any) -> Any:
        return item.strip() if isinstance(item, str) else item

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        from_period_id = ctx.parameters.get("from_period_id")
        to_period_id = ctx.parameters.get("to_period_id")

        errors = []
        for name, value in (("from_period_id", from_period_id), ("to_period_id", to_period_id)):
            if not value:
                errors.append(self._error(f"Missing required parameter: {name}", error_type="ValidationError"))
        if errors:
            return errors
        if from_period_id == to_period_id:
            return [self._error("Source and target period must differ", to_period_id, "ValidationError")]

        for period_id in (from_period_id, to_period_id):
            period = await ctx.call("get_period_by_id", lambda: ctx.services.periods.get_period_by_id(period_id))
            if period is None:
                errors.append(self._error(f"Period not found: {period_id}", period_id, "ValidationError"))
        if errors:
            return errors

        errors.extend(self._check_ids(items, "workgroup"))
        for workgroup_id in dict.fromkeys(item for item in items if isinstance(item, str) and item):
            workgroup = await ctx.call(
                "get_workgroup_by_id", lambda: ctx.services.workgroups.get_workgroup_by_id(workgroup_id)
            )
            if workgroup is None:
                errors.append(self._error(f"Workgroup not found: {workgroup_id}", workgroup_id, "ValidationError"))
            elif workgroup.period_id != from_period_id:
                errors.append(
                    self._error(
                        f"Workgroup {workgroup_id} does not belong to period {from_period_id}",
                        workgroup_id,
                        "ValidationError",
                    )
                )
        return errors

    async def execute_item(self, workgroup_id: str, ctx: OperationContext) -> ItemResult:
        to_period_id = ctx.parameters["to_period_id"]
        copy_members = bool(ctx.parameters.get("copy_members", True))

        clone = await ctx.call(
            "clone_workgroup",
            lambda: ctx.services.workgroups.clone_workgroup(workgroup_id, to_period_id, copy_members),
        )
        if clone is None:
            return self._error(f"Workgroup could not be cloned into period {to_period_id}", workgroup_id)

        message = f"Migrated to period {to_period_id} as {clone.id}"
        if ctx.parameters.get("archive_source"):
            archived = await ctx.call(
                "archive_workgroup",
                lambda: ctx.services.workgroups.archive_workgroup(workgroup_id, f"Migrated to period {to_period_id}"),
            )
            message += "; source archived" if archived else "; source could not be archived"
        return self._outcome(workgroup_id, message, clone.display_name)

    def invalidation_targets(self, workgroup_id: str, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [
            InvalidationTarget("workgroup", workgroup_id, "migrate"),
            InvalidationTarget("workgroup", None, "create"),
        ]


class ConsolidateInactiveWorkgroupsHandler(ArchiveWorkgroupsHandler):
    """Archive small active workgroups that have shown no activity for a while.

    Targets are selected at run time from every workgroup; the caller passes
    no items. Parameters: ``min_inactive_days`` (default 90), ``max_members``
    (default 5), optional ``categories`` and ``as_of`` (defaults to now).
    """

    kind = OperationKind.CONSOLIDATE_INACTIVE_WORKGROUPS
    resolves_targets = True

    DEFAULT_REASON = "Consolidated: workgroup inactive"
    DEFAULT_MIN_INACTIVE_DAYS = 90
    DEFAULT_MAX_MEMBERS = 5

    async def resolve_items(self, items: List[Any], ctx: OperationContext) -> List[Any]:
        self._require_no_items(items)
        try:
            min_inactive_days = int(ctx.parameters.get("min_inactive_days", self.DEFAULT_MIN_INACTIVE_DAYS))
            max_members = int(ctx.parameters.get("max_members", self.DEFAULT_MAX_MEMBERS))
        except (TypeError, ValueError):
            raise self._reject("min_inactive_days and max_members must be integers")
        if min_inactive_days < 0 or max_members < 0:
            raise self._reject("min_inactive_days and max_members must not be negative")

        categories = ctx.parameters.get("categories") or None
        cutoff = _as_utc(ctx.parameters.get("as_of") or datetime.now(timezone.utc)) - timedelta(
            days=min_inactive_days
        )

        workgroups = await ctx.call("get_all_workgroups", ctx.services.workgroups.get_all_workgroups)
        selected = []
        for workgroup in workgroups or []:
            if not workgroup.is_active or len(workgroup.member_ids) > max_members:
                continue
            if categories is not None and workgroup.category not in categories:
                continue
            last_activity = workgroup.last_activity_at
            if last_activity is None or _as_utc(last_activity) >= cutoff:
                continue
            selected.append(workgroup.id)

        logger.info(
            f"Found {len(selected)} inactive workgroup(s) (idle over {min_inactive_days} days, "
            f"at most {max_members} members)"
        )
        return selected


class ArchivePeriodWorkgroupsHandler(ArchiveWorkgroupsHandler):
    """Archive every active workgroup of a finished period (``period_id`` parameter)."""

    kind = OperationKind.ARCHIVE_PERIOD_WORKGROUPS
    resolves_targets = True

    def _reason(self, ctx: OperationContext) -> str:
        return ctx.parameters.get("reason") or f"Period {ctx.parameters.get('period_id')} closed"

    async def resolve_items(self, items: List[Any], ctx: OperationContext) -> List[Any]:
        self._require_no_items(items)
        period_id = ctx.parameters.get("period_id")
        if not period_id:
            raise self._reject("Missing required parameter: period_id")

        period = await ctx.call("get_period_by_id", lambda: ctx.services.periods.get_period_by_id(period_id))
        if period is None:
            raise self._reject(f"Period not found: {period_id}", period_id)
        if period.is_current and not ctx.parameters.get("allow_current"):
            raise self._reject(f"Period {period_id} is the current period", period_id)

        workgroups = await ctx.call(
            "get_workgroups_by_period", lambda: ctx.services.workgroups.get_workgroups_by_period(period_id)
        )
        return [workgroup.id for workgroup in workgroups or [] if workgroup.is_active]


class CreatePeriodWorkgroupsHandler(OperationHandler):
    """Create one workgroup per template in a new period.

    Items are template ids. Parameters: ``period_id`` (required) and an
    optional ``owner_id`` for the new workgroups.
    """

    kind = OperationKind.CREATE_PERIOD_WORKGROUPS
    entity_kind = "workgroup"

    def coerce_item(self, item: Any) -> Any:
        return item.strip() if isinstance(item, str) else item

    async def validate(self, items: List[Any], ctx: OperationContext) -> List[ItemError]:
        period_id = ctx.parameters.get("period_id")
        if not period_id:
            return [self._error("Missing required parameter: period_id", error_type="ValidationError")]
        if ctx.services.templates is None:
            return [self._error("No workgroup template service is configured", error_type="ValidationError")]

        period = await ctx.call("get_period_by_id", lambda: ctx.services.periods.get_period_by_id(period_id))
        if period is None:
            return [self._error(f"Period not found: {period_id}", period_id, "ValidationError")]

        errors = self._check_ids(items, "template")

        owner_id = ctx.parameters.get("owner_id")
        if owner_id:
            owner = await ctx.call("get_user_by_id", lambda: ctx.services.users.get_user_by_id(owner_id))
            if owner is None or not owner.is_active:
                errors.append(self._error(f"Owner not found or inactive: {owner_id}", owner_id, "ValidationError"))

        existing = await ctx.call(
            "get_workgroups_by_period", lambda: ctx.services.workgroups.get_workgroups_by_period(period_id)
        )
        taken_names = {workgroup.display_name.lower() for workgroup in existing or [] if workgroup.is_active}

        for template_id in dict.fromkeys(item for item in items if isinstance(item, str) and item):
            template = await ctx.call(
                "get_template_by_id", lambda: ctx.services.templates.get_template_by_id(template_id)
            )
            if template is None:
                errors.append(self._error(f"Template not found: {template_id}", template_id, "ValidationError"))
                continue
            name = template.render_name(period)
            if name.lower() in taken_names:
                errors.append(
                    self._error(
                        f"Workgroup already exists in period {period_id}: {name}", template_id, "ValidationError"
                    )
                )
            taken_names.add(name.lower())
        return errors

    async def execute_item(self, template_id: str, ctx: OperationContext) -> ItemResult:
        period_id = ctx.parameters["period_id"]
        period = await ctx.call("get_period_by_id", lambda: ctx.services.periods.get_period_by_id(period_id))
        template = await ctx.call(
            "get_template_by_id", lambda: ctx.services.templates.get_template_by_id(template_id)
        )
        if period is None or template is None:
            return self._error(f"Template {template_id} or period {period_id} no longer exists", template_id)

        name = template.render_name(period)
        workgroup = await ctx.call(
            "create_workgroup",
            lambda: ctx.services.workgroups.create_workgroup(
                name, period.id, ctx.parameters.get("owner_id"), template.id, template.category
            ),
        )
        if workgroup is None:
            return self._error(f"Workgroup could not be created from template {template_id}", template_id)
        return self._outcome(workgroup.id, f"Created workgroup '{name}' from template {template_id}", name)

    def invalidation_targets(self, template_id: str, outcome: ItemOutcome) -> List[InvalidationTarget]:
        return [InvalidationTarget("workgroup", outcome.entity_id, "create")]


def default_handlers() -> Dict[str, OperationHandler]:
    """Return a fresh handler for every supported operation kind, keyed by kind value."""
    handlers: List[OperationHandler] = [
        OnboardUsersHandler(),
        DeactivateUsersHandler(),
        ChangeRolesHandler(),
        MembershipHandler(adding=True),
        MembershipHandler(adding=False),
        ArchiveWorkgroupsHandler(),
        RestoreWorkgroupsHandler(),
        MigrateWorkgroupsHandler(),
        ConsolidateInactiveWorkgroupsHandler(),
        ArchivePeriodWorkgroupsHandler(),
        CreatePeriodWorkgroupsHandler(),
    ]
    return {handler.kind.value: handler for handler in handlers}
