"""
Typed Exception Hierarchy for the Claims Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The approval engine is called by many independent sessions (HTTP handlers,
batch jobs, UI actions).  Each of them must react differently to a failed
decision: retry after a backoff, show a role-specific message, or give up.
String matching on messages is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception says whether it is RETRYABLE
  4. Every exception carries a ``history_action`` tag used when the failed
     attempt is written to the approval history
  5. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way to handle a decision failure:
    try:
        coordinator.decide(claim_id, actor_id, Role.HR, Decision.APPROVE, "")
    except ClaimLockedError as e:          # transient, retry with backoff
        schedule_retry(e.claim_id)
    except ClaimsKernelError as e:         # business error, surface it
        api_response(code=e.code, message=e.user_message)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ClaimsKernelError:

    ClaimsKernelError (base)
    |
    +-- ClaimError
    |   +-- ClaimNotFoundError
    |   +-- ClaimValidationError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- UnauthorizedApproverError
    |
    +-- ConcurrencyError
    |   +-- ClaimLockedError
    |   +-- StoreConflictError
    |
    +-- AuditError
    |   +-- AuditWriteError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- EventBusError
        +-- EventBackpressureError
        +-- EventBusNotRunningError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                  | Retry | When Raised
--------------|-----------------------|-------|----------------------------------
Claim         | NOT_FOUND             | no    | Claim ID doesn't exist
              | VALIDATION_ERROR      | no    | Bad submission / missing reason
--------------|-----------------------|-------|----------------------------------
Workflow      | INVALID_TRANSITION    | no    | Terminal claim, illegal escalation
              | UNAUTHORIZED          | no    | Role/department/self-approval
--------------|-----------------------|-------|----------------------------------
Concurrency   | ALREADY_LOCKED        | yes   | Another actor holds the claim lock
              | STORE_CONFLICT        | yes   | Version/lock changed under us
--------------|-----------------------|-------|----------------------------------
Audit         | AUDIT_WRITE_FAILED    | no    | History row could not be written
              | AUDIT_CHAIN_BROKEN    | no    | Hash chain validation failed
--------------|-----------------------|-------|----------------------------------
Immutability  | IMMUTABILITY_VIOLATION| no    | Update/delete of a history row
--------------|-----------------------|-------|----------------------------------
Event bus     | EVENT_BACKPRESSURE    | yes   | Subscriber queue full past timeout
              | EVENT_BUS_NOT_RUNNING | no    | Publish before start()/after stop

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY RAISE INSTEAD OF RETURNING RESULT OBJECTS?
   Python callers already branch on exception types; a raised typed error
   cannot be silently ignored the way an unchecked result flag can.  The
   success path returns a ``DecisionResult``.

2. WHY ``user_message`` SEPARATE FROM ``str(exc)``?
   ``str(exc)`` is for logs and carries ids.  ``user_message`` is safe to
   show to the person who clicked the button.

3. WHY ONLY CONCURRENCY ERRORS ARE RETRYABLE?
   Everything else is a caller or business-rule error; retrying it blindly
   produces the same failure.

===============================================================================
"""


class ClaimsKernelError(Exception):
    """
    Base exception for all claims kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "CLAIMS_KERNEL_ERROR"
    retryable: bool = False
    history_action: str | None = None

    @property
    def user_message(self) -> str:
        """Message safe to show to the end user."""
        return "The request could not be completed."


# Claim-related exceptions


class ClaimError(ClaimsKernelError):
    """Base exception for claim-related errors."""

    code: str = "CLAIM_ERROR"


class ClaimNotFoundError(ClaimError):
    """Claim with given ID was not found."""

    code: str = "NOT_FOUND"
    history_action = "not_found"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(f"Claim not found: {claim_id}")

    @property
    def user_message(self) -> str:
        return "This claim no longer exists or you followed an invalid link."


class ClaimValidationError(ClaimError):
    """Input failed validation (bad submission, missing rejection reason)."""

    code: str = "VALIDATION_ERROR"
    history_action = "validation_failed"

    def __init__(self, field: str, reason: str, claim_id: str | None = None):
        self.field = field
        self.reason = reason
        self.claim_id = claim_id
        super().__init__(f"Invalid {field}: {reason}")

    @property
    def user_message(self) -> str:
        return self.reason[:1].upper() + self.reason[1:] + "."


# Workflow-related exceptions


class WorkflowError(ClaimsKernelError):
    """Base exception for workflow-related errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested decision is not a legal transition from the current state."""

    code: str = "INVALID_TRANSITION"
    history_action = "invalid_transition"

    def __init__(self, claim_id: str, current_status: str, reason: str):
        self.claim_id = claim_id
        self.current_status = current_status
        self.reason = reason
        super().__init__(
            f"Invalid transition for claim {claim_id} "
            f"(status={current_status}): {reason}"
        )

    @property
    def user_message(self) -> str:
        if self.current_status in ("approved", "rejected"):
            return (
                f"This claim has already been {self.current_status} "
                f"and can no longer be changed."
            )
        return f"This action is not allowed right now: {self.reason}."


class UnauthorizedApproverError(WorkflowError):
    """Actor is not allowed to act on the claim's active step."""

    code: str = "UNAUTHORIZED"
    history_action = "unauthorized"

    def __init__(
        self,
        claim_id: str,
        actor_id: str,
        actor_role: str,
        required_role: str | None,
        reason: str,
    ):
        self.claim_id = claim_id
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.required_role = required_role
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} ({actor_role}) may not act on claim {claim_id}"
            f" (requires {required_role}): {reason}"
        )

    @property
    def user_message(self) -> str:
        if self.actor_role == "employee":
            return "Employees cannot approve or reject expense claims."
        if self.required_role and self.reason == "insufficient_role":
            return (
                f"This step requires {self.required_role} approval; "
                f"your {self.actor_role} role cannot act on it."
            )
        if self.reason == "self_approval":
            return "You cannot decide on your own expense claim."
        if self.reason == "department_mismatch":
            return "Managers can only review claims from their own department."
        if self.reason == "role_mismatch":
            return "Your account does not hold the role used for this request."
        if self.reason == "info_request_pending":
            return (
                "Additional information was requested by another approver; "
                "only they or an approver of equal or higher role can continue this claim."
            )
        return "You are not authorized to act on this claim."


# Concurrency-related exceptions


class ConcurrencyError(ClaimsKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ClaimLockedError(ConcurrencyError):
    """Another actor holds an unexpired processing lock on the claim."""

    code: str = "ALREADY_LOCKED"
    history_action = "lock_denied"

    def __init__(self, claim_id: str, holder_id: str | None, expires_at=None):
        self.claim_id = claim_id
        self.holder_id = holder_id
        self.expires_at = expires_at
        super().__init__(
            f"Claim {claim_id} is locked by {holder_id} until {expires_at}"
        )

    @property
    def user_message(self) -> str:
        return "Claim is currently being processed, try again in a moment."


class StoreConflictError(ConcurrencyError):
    """The store rejected a write because a concurrent writer got there first."""

    code: str = "STORE_CONFLICT"
    history_action = "store_conflict"

    def __init__(self, claim_id: str, expected_version: int | None, reason: str = ""):
        self.claim_id = claim_id
        self.expected_version = expected_version
        self.reason = reason
        super().__init__(
            f"Store conflict on claim {claim_id} "
            f"(expected version {expected_version}): {reason or 'modified concurrently'}"
        )

    @property
    def user_message(self) -> str:
        return "Claim was updated by someone else at the same time, try again."


# Audit-related exceptions


class AuditError(ClaimsKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditWriteError(AuditError):
    """
    The approval history entry could not be written.

    A decision that cannot be audited is not applied.
    """

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, claim_id: str, reason: str):
        self.claim_id = claim_id
        self.reason = reason
        super().__init__(f"Audit write failed for claim {claim_id}: {reason}")

    @property
    def user_message(self) -> str:
        return "The decision could not be recorded and was not applied."


class AuditChainBrokenError(AuditError):
    """Approval history hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, claim_id: str, sequence: int, expected_hash: str, actual_hash: str):
        self.claim_id = claim_id
        self.sequence = sequence
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Approval history chain broken for claim {claim_id} at entry "
            f"{sequence}: expected {expected_hash}, got {actual_hash}"
        )


# Immutability-related exceptions


class ImmutabilityError(ClaimsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Event bus exceptions


class EventBusError(ClaimsKernelError):
    """Base exception for event bus errors."""

    code: str = "EVENT_BUS_ERROR"


class EventBackpressureError(EventBusError):
    """A subscriber queue stayed full for longer than the publish timeout."""

    code: str = "EVENT_BACKPRESSURE"
    retryable: bool = True

    def __init__(self, subscription_name: str, event_type: str, timeout: float):
        self.subscription_name = subscription_name
        self.event_type = event_type
        self.timeout = timeout
        super().__init__(
            f"Subscriber {subscription_name} did not accept {event_type} "
            f"within {timeout}s"
        )


class EventBusNotRunningError(EventBusError):
    """Publish attempted while the bus is not started."""

    code: str = "EVENT_BUS_NOT_RUNNING"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Cannot publish {event_type}: event bus is not running")
