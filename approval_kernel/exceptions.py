"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure of the workflow engine is a deterministic, caller-facing
condition that the calling document service (or HTTP layer) must be able
to react to without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        engine.process_approval(instance_id, actor, "approve")
    except Exception as e:
        if "not authorized" in str(e):  # FRAGILE
            return 403

Example - RIGHT way:
    try:
        engine.process_approval(instance_id, actor, "approve")
    except NotAuthorizedError as e:
        return api_response(403, code=e.code, level=e.level)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- DefinitionError
    |   +-- DefinitionNotFoundError
    |   +-- NoActiveDefinitionError
    |   +-- InvalidDefinitionError
    |   +-- DuplicateDefaultDefinitionError
    |
    +-- RoutingError
    |   +-- NoLevelsDeterminedError
    |
    +-- InstanceError
    |   +-- InstanceNotFoundError
    |   +-- DuplicateInstanceError
    |   +-- WorkflowAlreadyTerminalError
    |   +-- InvalidLevelError
    |   +-- InvalidActionError
    |   +-- RecallNotAllowedError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |   +-- AlreadyActedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Definition      | DEFINITION_NOT_FOUND          | Definition ID doesn't exist
                | NO_ACTIVE_DEFINITION          | initiate() with no active definition
                | INVALID_DEFINITION            | Level/rule structure violates invariants
                | DUPLICATE_DEFAULT_DEFINITION  | Second active default for a document type
----------------|-------------------------------|---------------------------------------
Routing         | NO_LEVELS_DETERMINED          | Router produced an empty level set
----------------|-------------------------------|---------------------------------------
Instance        | INSTANCE_NOT_FOUND            | Instance ID doesn't exist
                | DUPLICATE_INSTANCE            | Pending instance exists for document
                | WORKFLOW_ALREADY_TERMINAL     | Mutation of approved/rejected/cancelled
                | INVALID_LEVEL                 | Current level missing from definition
                | INVALID_ACTION                | Action outside {approve, reject}
                | RECALL_NOT_ALLOWED            | Definition forbids cancellation
----------------|-------------------------------|---------------------------------------
Authorization   | NOT_AUTHORIZED                | Actor not an approver for the level
                | ALREADY_ACTED                 | Actor already acted at the level
----------------|-------------------------------|---------------------------------------
Concurrency     | CONCURRENCY_CONFLICT          | Optimistic update lost a race
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying append-only history/audit
----------------|-------------------------------|---------------------------------------
Audit           | AUDIT_CHAIN_BROKEN            | Stored audit hash fails recomputation

===============================================================================
PROPAGATION
===============================================================================

None of these errors is retried by the engine and none is fatal to the
process; each is scoped to one instance or definition.  The only failure
the engine swallows is an AuditSink error (logged, never propagated).
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Definition-related exceptions


class DefinitionError(WorkflowKernelError):
    """Base exception for workflow definition errors."""

    code: str = "DEFINITION_ERROR"


class DefinitionNotFoundError(DefinitionError):
    """Workflow definition with given ID was not found."""

    code: str = "DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition not found: {definition_id}")


class NoActiveDefinitionError(DefinitionError):
    """No active, non-removed definition exists for a document type."""

    code: str = "NO_ACTIVE_DEFINITION"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(
            f"No active workflow found for document type: {document_type}"
        )


class InvalidDefinitionError(DefinitionError):
    """
    Definition violates structural invariants.

    Carries every violation found, not only the first one, so an
    administrator can fix a definition in a single round trip.
    """

    code: str = "INVALID_DEFINITION"

    def __init__(self, definition_name: str, errors: tuple[str, ...] | list[str]):
        self.definition_name = definition_name
        self.errors = tuple(errors)
        super().__init__(
            f"Invalid workflow definition '{definition_name}': "
            + "; ".join(self.errors)
        )


class DuplicateDefaultDefinitionError(DefinitionError):
    """An active default definition already exists for the document type."""

    code: str = "DUPLICATE_DEFAULT_DEFINITION"

    def __init__(self, document_type: str, existing_definition_id: str):
        self.document_type = document_type
        self.existing_definition_id = existing_definition_id
        super().__init__(
            f"A default workflow already exists for {document_type}: "
            f"{existing_definition_id}"
        )


# Routing-related exceptions


class RoutingError(WorkflowKernelError):
    """Base exception for routing errors."""

    code: str = "ROUTING_ERROR"


class NoLevelsDeterminedError(RoutingError):
    """Router returned an empty set of required levels."""

    code: str = "NO_LEVELS_DETERMINED"

    def __init__(self, definition_id: str, document_type: str):
        self.definition_id = definition_id
        self.document_type = document_type
        super().__init__(
            f"No approval levels determined for {document_type} "
            f"(definition {definition_id})"
        )


# Instance-related exceptions


class InstanceError(WorkflowKernelError):
    """Base exception for workflow instance errors."""

    code: str = "INSTANCE_ERROR"


class InstanceNotFoundError(InstanceError):
    """Workflow instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


class DuplicateInstanceError(InstanceError):
    """A pending instance already exists for the document."""

    code: str = "DUPLICATE_INSTANCE"

    def __init__(self, document_type: str, document_id: str, existing_instance_id: str | None = None):
        self.document_type = document_type
        self.document_id = document_id
        self.existing_instance_id = existing_instance_id
        super().__init__(
            f"An active workflow already exists for {document_type} {document_id}"
        )


class WorkflowAlreadyTerminalError(InstanceError):
    """Mutation attempted on an instance that left the pending state."""

    code: str = "WORKFLOW_ALREADY_TERMINAL"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow {instance_id} is already {status}")


class InvalidLevelError(InstanceError):
    """Current level has no configuration in the bound definition."""

    code: str = "INVALID_LEVEL"

    def __init__(self, instance_id: str, level: int):
        self.instance_id = instance_id
        self.level = level
        super().__init__(f"Invalid workflow level {level} for instance {instance_id}")


class InvalidActionError(InstanceError):
    """Action outside the accepted vocabulary."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str, allowed: tuple[str, ...] = ("approve", "reject")):
        self.action = action
        self.allowed = allowed
        super().__init__(
            f"Action must be one of {', '.join(allowed)}; got {action!r}"
        )


class RecallNotAllowedError(InstanceError):
    """The bound definition does not allow cancelling (recalling) instances."""

    code: str = "RECALL_NOT_ALLOWED"

    def __init__(self, instance_id: str, definition_id: str):
        self.instance_id = instance_id
        self.definition_id = definition_id
        super().__init__(
            f"Workflow {instance_id} cannot be recalled: definition "
            f"{definition_id} disallows recall"
        )


# Authorization-related exceptions


class AuthorizationError(WorkflowKernelError):
    """Base exception for approver authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor is not a member of the approver set for the current level."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, instance_id: str, level: int):
        self.actor_id = actor_id
        self.instance_id = instance_id
        self.level = level
        super().__init__(
            f"User {actor_id} not authorized to approve level {level} "
            f"of workflow {instance_id}"
        )


class AlreadyActedError(AuthorizationError):
    """Actor already has a history entry at the current level."""

    code: str = "ALREADY_ACTED"

    def __init__(self, actor_id: str, instance_id: str, level: int):
        self.actor_id = actor_id
        self.instance_id = instance_id
        self.level = level
        super().__init__(
            f"Approver {actor_id} has already acted on level {level} "
            f"of workflow {instance_id}"
        )


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Optimistic update lost a race against another writer."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    Approval history entries and audit events are never updated or
    deleted once written.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit-related exceptions


class AuditError(WorkflowKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
