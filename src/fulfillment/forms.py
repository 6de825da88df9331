"""
Typed forms submitted through conversational actions.

Ticket-opening forms are a discriminated union keyed by ``ticket_type``, so
each ticket type has its own schema instead of a free-form answer map.
Action forms cover the order and dispute workflows.

Parsing never lets a pydantic error escape: ``parse_form`` and
``parse_ticket_form`` raise the package's ValidationError with a message
that tells the user which field to fix.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal, TypeVar
from uuid import UUID

import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from fulfillment.exceptions import ValidationError
from fulfillment.models import IssuePriority, RefundType, TicketType

MIN_EXPLANATION_LENGTH = 10


class Form(BaseModel):
    """Base for all forms: immutable, unknown fields rejected, whitespace stripped."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)


# =============================================================================
# Ticket forms
# =============================================================================


class ServiceOrderForm(Form):
    ticket_type: Literal[TicketType.SERVICE_ORDER] = TicketType.SERVICE_ORDER
    service_name: str = Field(min_length=1, max_length=100)
    requirements: str | None = Field(default=None, max_length=2000)
    budget: Decimal | None = Field(default=None, ge=0)

    def details(self) -> dict[str, str]:
        details = {"service_name": self.service_name}
        if self.requirements:
            details["requirements"] = self.requirements
        if self.budget is not None:
            details["budget"] = str(self.budget)
        return details


class ItemPurchaseForm(Form):
    ticket_type: Literal[TicketType.ITEM_PURCHASE] = TicketType.ITEM_PURCHASE
    item_id: UUID
    payment_method: str | None = Field(default=None, max_length=50)

    def details(self) -> dict[str, str]:
        details = {"item_id": str(self.item_id)}
        if self.payment_method:
            details["payment_method"] = self.payment_method
        return details


class SupportForm(Form):
    ticket_type: Literal[TicketType.SUPPORT] = TicketType.SUPPORT
    subject: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=MIN_EXPLANATION_LENGTH, max_length=2000)

    def details(self) -> dict[str, str]:
        return {"subject": self.subject, "description": self.description}


TicketForm = Annotated[
    ServiceOrderForm | ItemPurchaseForm | SupportForm,
    Field(discriminator="ticket_type"),
]

_ticket_form_adapter: TypeAdapter[TicketForm] = TypeAdapter(TicketForm)


# =============================================================================
# Order action forms
# =============================================================================


class CompletionForm(Form):
    notes: str = Field(min_length=1, max_length=2000)


class ConfirmationForm(Form):
    feedback: str | None = Field(default=None, max_length=1000)
    rating: int | None = Field(default=None, ge=1, le=5)


class IssueReportForm(Form):
    description: str = Field(min_length=MIN_EXPLANATION_LENGTH, max_length=2000)
    priority: IssuePriority = IssuePriority.MEDIUM


# =============================================================================
# Dispute resolution forms (staff only)
# =============================================================================


class ApproveWorkForm(Form):
    """
    Staff decision that the worker delivered what was ordered.

    ``confirmation`` must be the configured phrase (``COMPLETE`` by default),
    compared case-insensitively, so the decision is never made by a stray click.
    """

    confirmation: str
    notes: str = Field(min_length=MIN_EXPLANATION_LENGTH, max_length=1000)

    def confirms(self, phrase: str) -> bool:
        return self.confirmation.casefold() == phrase.strip().casefold()


class CorrectionsForm(Form):
    fix_instructions: str = Field(min_length=MIN_EXPLANATION_LENGTH, max_length=2000)


class RefundForm(Form):
    refund_type: RefundType
    refund_amount: Decimal | None = None
    reason: str = Field(min_length=MIN_EXPLANATION_LENGTH, max_length=1000)

    @model_validator(mode="after")
    def _amount_matches_type(self) -> RefundForm:
        if self.refund_type == RefundType.PARTIAL and self.refund_amount is None:
            raise ValueError("a PARTIAL refund needs refund_amount")
        return self


# =============================================================================
# Parsing
# =============================================================================

FormT = TypeVar("FormT", bound=Form)


def parse_form(form_type: type[FormT], data: dict[str, Any]) -> FormT:
    """
    Validate raw form answers.

    Raises:
        ValidationError: With a message naming the offending field
    """
    try:
        return form_type.model_validate(data)
    except pydantic.ValidationError as e:
        raise _to_validation_error(e) from e


def parse_ticket_form(data: dict[str, Any]) -> ServiceOrderForm | ItemPurchaseForm | SupportForm:
    """
    Validate a ticket-opening form, choosing the schema by ``ticket_type``.

    Raises:
        ValidationError: With a message naming the offending field
    """
    try:
        return _ticket_form_adapter.validate_python(data)
    except pydantic.ValidationError as e:
        raise _to_validation_error(e) from e


def _to_validation_error(error: pydantic.ValidationError) -> ValidationError:
    tags = {t.value for t in TicketType}
    problems = []
    first_field: str | None = None
    for detail in error.errors():
        # Discriminated unions prefix the location with the union tag
        name = ".".join(str(part) for part in detail["loc"] if part not in tags) or None
        first_field = first_field or name
        if detail["type"] == "extra_forbidden":
            problems.append(f"'{name}' is not a field of this form; remove it")
        elif detail["type"] == "missing":
            problems.append(f"'{name}' is required")
        elif name:
            problems.append(f"'{name}': {_lower_first(detail['msg'])}")
        else:
            problems.append(_lower_first(detail["msg"]))
    message = "Please fix the form: " + "; ".join(problems) + "."
    return ValidationError(message, field=first_field)


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


__all__ = [
    "Form",
    "ServiceOrderForm",
    "ItemPurchaseForm",
    "SupportForm",
    "TicketForm",
    "CompletionForm",
    "ConfirmationForm",
    "IssueReportForm",
    "ApproveWorkForm",
    "CorrectionsForm",
    "RefundForm",
    "parse_form",
    "parse_ticket_form",
]
