"""
Dispute reporting and the three staff resolution paths.

Each path runs its effects in a fixed order:

1. The order transition, through OrderLifecycleManager
2. The issue update
3. Retracting stale actions and fanning out notifications

The transition is the commit point. If the issue update fails after it, the
failure is logged and returned as a warning on the ResolutionReceipt; the
order is never rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from fulfillment.events import CorrectionsRequested, IssueReported, IssueResolved
from fulfillment.exceptions import FulfillmentError, IssueAlreadyResolved, ValidationError
from fulfillment.forms import (
    MIN_EXPLANATION_LENGTH,
    ApproveWorkForm,
    CorrectionsForm,
    RefundForm,
)
from fulfillment.lifecycle import OrderLifecycleManager
from fulfillment.models import Issue, IssuePriority, IssueStatus, Order, OrderStatus
from fulfillment.notifications import FanoutReport, NotificationFanout, Recipient
from fulfillment.observability import (
    ATTR_ACTOR_ID,
    ATTR_ISSUE_ID,
    ATTR_ORDER_ID,
    ATTR_RESOLUTION_PATH,
    Tracer,
    create_tracer,
)
from fulfillment.roles import StaffRoleChecker
from fulfillment.stores.interface import FulfillmentStore
from fulfillment.transitions import describe_refund
from fulfillment.types import ActorId

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_PHRASE = "COMPLETE"

_RESOLVED_RECIPIENTS = [
    Recipient.CUSTOMER_DM,
    Recipient.WORKER_DM,
    Recipient.ORDER_CHANNEL,
    Recipient.STAFF_LOG,
]


class ResolutionPath(StrEnum):
    APPROVE_WORK = "approve_work"
    REQUEST_CORRECTIONS = "request_corrections"
    APPROVE_REFUND = "approve_refund"


@dataclass(frozen=True)
class ReportReceipt:
    """
    Result of reporting an issue.

    Attributes:
        order: The order, now DISPUTED
        issue: The created or reopened issue, or None if it could not be stored
        reopened: True if an issue from a corrections round was reopened
        notifications: Alerts sent to the order channel and staff
        warnings: Effects that failed after the order became DISPUTED
    """

    order: Order
    issue: Issue | None
    reopened: bool = False
    notifications: FanoutReport | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolutionReceipt:
    """
    Result of a staff resolution.

    Attributes:
        path: Which of the three resolutions was applied
        order: Order snapshot after the transition
        issue: Issue snapshot after the update (the previous snapshot if the
            update failed)
        notifications: Fanout report for the resolution
        warnings: Effects that failed after the transition committed
    """

    path: ResolutionPath
    order: Order
    issue: Issue
    notifications: FanoutReport | None = None
    warnings: tuple[str, ...] = ()


class DisputeResolutionWorkflow:
    """
    Lets a customer dispute an order and staff settle the dispute.

    Resolution paths:
    - approve_work: the worker delivered; complete the order by admin override
    - request_corrections: send the order back to the worker
    - approve_refund: cancel the order with a FULL, PARTIAL or NONE refund

    Example:
        >>> disputes = DisputeResolutionWorkflow(lifecycle, store, fanout, roles)
        >>> receipt = await disputes.report_issue(order.id, customer_id, "Wrong rank reached")
        >>> receipt = await disputes.approve_refund(
        ...     receipt.issue.id,
        ...     staff_id,
        ...     RefundForm(refund_type="PARTIAL", refund_amount="40", reason="Half was delivered"),
        ... )
    """

    def __init__(
        self,
        lifecycle: OrderLifecycleManager,
        store: FulfillmentStore,
        fanout: NotificationFanout,
        roles: StaffRoleChecker,
        *,
        confirmation_phrase: str = DEFAULT_CONFIRMATION_PHRASE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._lifecycle = lifecycle
        self._store = store
        self._fanout = fanout
        self._roles = roles
        self._confirmation_phrase = confirmation_phrase
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Reporting
    # =========================================================================

    async def report_issue(
        self,
        order_id: UUID,
        reporter_id: ActorId,
        description: str,
        priority: IssuePriority = IssuePriority.MEDIUM,
        *,
        expected_status: OrderStatus | None = None,
    ) -> ReportReceipt:
        """
        Dispute an order that is in progress or awaiting confirmation.

        The order moves to DISPUTED first. Then an issue is created, or the
        issue left IN_REVIEW by a corrections round is reopened. Finally the
        confirm/report actions are retracted and the order channel and staff
        alert channel are notified.

        Raises:
            ValidationError: If the description is too short
            StaleState: If the order is no longer in expected_status
            InvalidTransition: If the order cannot be disputed
            PermissionDenied: If the reporter is not the customer
        """
        with self._tracer.span(
            "fulfillment.disputes.report_issue",
            {ATTR_ORDER_ID: str(order_id), ATTR_ACTOR_ID: reporter_id},
        ):
            description = (description or "").strip()
            if len(description) < MIN_EXPLANATION_LENGTH:
                raise ValidationError(
                    f"Describe the problem in at least {MIN_EXPLANATION_LENGTH} characters "
                    "so staff can review it.",
                    field="description",
                )

            before = await self._store.get_order(order_id)
            order = await self._lifecycle.open_dispute(
                order_id, reporter_id, description, expected_status=expected_status
            )

            warnings: list[str] = []
            issue, reopened = await self._open_issue(order, reporter_id, description, priority)
            if issue is None:
                warnings.append("The issue could not be recorded; staff must open it by hand.")

            if not await self._fanout.retract_actions(before.prompt_message):
                if before.prompt_message is not None:
                    warnings.append("The old confirmation buttons could not be disabled.")

            report = None
            if issue is not None:
                report = await self._fanout.notify(
                    IssueReported(
                        actor_id=reporter_id, order=order, issue=issue, reopened=reopened
                    ),
                    [Recipient.ORDER_CHANNEL, Recipient.STAFF_ALERTS],
                )
                alert = report.ref(Recipient.STAFF_ALERTS)
                if alert is not None:
                    issue = await self._store.record_issue_message(issue.id, alert)
                else:
                    warnings.append("Staff could not be alerted about this issue.")

            logger.info(
                "%s disputed by %s",
                order.label,
                reporter_id,
                extra={
                    "order_id": str(order.id),
                    "issue_id": str(issue.id) if issue else None,
                    "reopened": reopened,
                },
            )
            return ReportReceipt(
                order=order,
                issue=issue,
                reopened=reopened,
                notifications=report,
                warnings=tuple(warnings),
            )

    async def get_issue(self, issue_id: UUID) -> Issue:
        return await self._store.get_issue(issue_id)

    # =========================================================================
    # Resolution paths
    # =========================================================================

    async def approve_work(
        self,
        issue_id: UUID,
        staff_id: ActorId,
        form: ApproveWorkForm,
    ) -> ResolutionReceipt:
        """
        Rule for the worker: complete the order on the customer's behalf.

        Raises:
            PermissionDenied: If the caller is not staff
            ValidationError: If the confirmation phrase is wrong
            IssueAlreadyResolved: If the issue was already resolved
            InvalidTransition: If the order cannot be completed
        """
        with self._tracer.span(
            "fulfillment.disputes.approve_work",
            {
                ATTR_ISSUE_ID: str(issue_id),
                ATTR_ACTOR_ID: staff_id,
                ATTR_RESOLUTION_PATH: ResolutionPath.APPROVE_WORK.value,
            },
        ):
            await self._roles.require_staff(staff_id, "resolve disputes")
            if not form.confirms(self._confirmation_phrase):
                raise ValidationError(
                    f'Type "{self._confirmation_phrase}" in the confirmation box to approve '
                    "the work. Nothing was changed.",
                    field="confirmation",
                )
            issue, order = await self._load_unresolved(issue_id)

            result = await self._lifecycle.confirm_completion(
                order.id,
                order.customer_id,
                is_admin_override=True,
                acting_staff_id=staff_id,
                notify=False,
                settle_issue=False,
            )
            return await self._finish(
                ResolutionPath.APPROVE_WORK,
                result.order,
                issue,
                staff_id,
                f"Worker right - {form.notes}",
                list(result.warnings),
                [*_RESOLVED_RECIPIENTS, Recipient.COMPLETED_LEDGER],
            )

    async def request_corrections(
        self,
        issue_id: UUID,
        staff_id: ActorId,
        form: CorrectionsForm,
    ) -> ResolutionReceipt:
        """
        Send the order back to the worker with fix instructions.

        The issue stays unresolved (IN_REVIEW) and is settled when the
        customer confirms the corrected work, or reopened if they report
        again.

        Raises:
            PermissionDenied: If the caller is not staff
            IssueAlreadyResolved: If the issue was already resolved
            InvalidTransition: If the order is not DISPUTED
        """
        with self._tracer.span(
            "fulfillment.disputes.request_corrections",
            {
                ATTR_ISSUE_ID: str(issue_id),
                ATTR_ACTOR_ID: staff_id,
                ATTR_RESOLUTION_PATH: ResolutionPath.REQUEST_CORRECTIONS.value,
            },
        ):
            await self._roles.require_staff(staff_id, "resolve disputes")
            issue, order = await self._load_unresolved(issue_id)

            order = await self._lifecycle.return_to_worker(
                order.id, staff_id, form.fix_instructions
            )

            warnings: list[str] = []
            try:
                issue = await self._store.update_issue(
                    issue.id,
                    IssueStatus.IN_REVIEW,
                    resolution=f"Corrections requested - {form.fix_instructions}",
                )
            except FulfillmentError as e:
                self._warn_issue_update(issue, order, e, warnings)

            await self._fanout.retract_actions(issue.alert_message)
            report = await self._fanout.notify(
                CorrectionsRequested(
                    actor_id=staff_id,
                    order=order,
                    issue=issue,
                    instructions=form.fix_instructions,
                ),
                _RESOLVED_RECIPIENTS,
            )
            logger.info(
                "Corrections requested on %s by %s",
                order.label,
                staff_id,
                extra={"order_id": str(order.id), "issue_id": str(issue.id)},
            )
            return ResolutionReceipt(
                path=ResolutionPath.REQUEST_CORRECTIONS,
                order=order,
                issue=issue,
                notifications=report,
                warnings=tuple(warnings),
            )

    async def approve_refund(
        self,
        issue_id: UUID,
        staff_id: ActorId,
        form: RefundForm,
    ) -> ResolutionReceipt:
        """
        Rule for the customer: cancel the order with a refund.

        A linked item is released before the issue is resolved.

        Raises:
            PermissionDenied: If the caller is not staff
            IssueAlreadyResolved: If the issue was already resolved
            ValidationError: If the refund amount is invalid
            InvalidTransition: If the order is already terminal
        """
        with self._tracer.span(
            "fulfillment.disputes.approve_refund",
            {
                ATTR_ISSUE_ID: str(issue_id),
                ATTR_ACTOR_ID: staff_id,
                ATTR_RESOLUTION_PATH: ResolutionPath.APPROVE_REFUND.value,
            },
        ):
            await self._roles.require_staff(staff_id, "resolve disputes")
            issue, order = await self._load_unresolved(issue_id)

            result = await self._lifecycle.cancel_order(
                order.id,
                staff_id,
                form.reason,
                form.refund_type,
                form.refund_amount,
                notify=False,
                settle_issue=False,
            )
            refund = result.order.refund
            assert refund is not None
            summary = describe_refund(refund.refund_type, refund.amount, order.currency)
            return await self._finish(
                ResolutionPath.APPROVE_REFUND,
                result.order,
                issue,
                staff_id,
                f"Customer refund approved: {summary} - {form.reason}",
                list(result.warnings),
                _RESOLVED_RECIPIENTS,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _open_issue(
        self,
        order: Order,
        reporter_id: ActorId,
        description: str,
        priority: IssuePriority,
    ) -> tuple[Issue | None, bool]:
        try:
            existing = await self._store.get_active_issue(order.id)
            if existing is not None:
                if existing.status == IssueStatus.IN_REVIEW:
                    existing = await self._store.update_issue(existing.id, IssueStatus.OPEN)
                return existing, True
            issue = await self._store.create_issue(order.id, reporter_id, description, priority)
            return issue, False
        except FulfillmentError as e:
            logger.warning(
                "Could not record issue for disputed %s: %s",
                order.label,
                e,
                extra={"order_id": str(order.id)},
            )
            return None, False

    async def _load_unresolved(self, issue_id: UUID) -> tuple[Issue, Order]:
        issue = await self._store.get_issue(issue_id)
        if issue.is_resolved:
            raise IssueAlreadyResolved(issue.id, issue.resolution)
        order = await self._store.get_order(issue.order_id)
        return issue, order

    async def _finish(
        self,
        path: ResolutionPath,
        order: Order,
        issue: Issue,
        staff_id: ActorId,
        resolution: str,
        warnings: list[str],
        recipients: list[Recipient],
    ) -> ResolutionReceipt:
        """Resolve the issue and notify, after the order transition committed."""
        try:
            issue = await self._store.update_issue(
                issue.id, IssueStatus.RESOLVED, resolution=resolution, resolver_id=staff_id
            )
        except FulfillmentError as e:
            self._warn_issue_update(issue, order, e, warnings)

        await self._fanout.retract_actions(issue.alert_message)
        report = await self._fanout.notify(
            IssueResolved(actor_id=staff_id, order=order, issue=issue, resolution=resolution),
            recipients,
        )
        logger.info(
            "Issue on %s resolved by %s (%s)",
            order.label,
            staff_id,
            path.value,
            extra={
                "order_id": str(order.id),
                "issue_id": str(issue.id),
                "resolution_path": path.value,
            },
        )
        return ResolutionReceipt(
            path=path,
            order=order,
            issue=issue,
            notifications=report,
            warnings=tuple(warnings),
        )

    def _warn_issue_update(
        self,
        issue: Issue,
        order: Order,
        error: FulfillmentError,
        warnings: list[str],
    ) -> None:
        logger.warning(
            "Issue %s not updated after %s moved to %s: %s",
            issue.id,
            order.label,
            order.status,
            error,
            extra={"order_id": str(order.id), "issue_id": str(issue.id)},
        )
        warnings.append(
            f"{order.label} is now {order.status.value.replace('_', ' ').lower()}, but the "
            "issue record could not be updated. Update it manually."
        )


__all__ = [
    "DEFAULT_CONFIRMATION_PHRASE",
    "DisputeResolutionWorkflow",
    "ReportReceipt",
    "ResolutionPath",
    "ResolutionReceipt",
]
