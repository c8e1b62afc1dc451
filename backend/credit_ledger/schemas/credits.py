"""Credit balance and transaction schemas for the tenant API.

All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from credit_ledger.models.credit import CreditType

# Upper bound for a single deduct/refund; generations cost 1 credit each
_MAX_MUTATION_AMOUNT = 1000


class UsageCounts(BaseModel):
    """Lifetime generations consumed per credit type."""

    model_config = ConfigDict(extra="forbid")

    article: int
    image: int
    rewrite: int


class BalancesResponse(BaseModel):
    """Response for GET /api/v1/credits/{user_id}.

    Attributes:
        user_id: Site-local user id.
        article: Article credits.
        image: Image credits.
        rewrite: Rewrite credits.
        usage: Lifetime usage counters.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str
    article: int
    image: int
    rewrite: int
    usage: UsageCounts


class CreditMutationRequest(BaseModel):
    """Request body for deduct.

    Attributes:
        credit_type: article, image, or rewrite.
        amount: Credits to move (1-1000). Defaults to 1.
        reference: Optional caller reference stored on the log entry.
    """

    model_config = ConfigDict(extra="forbid")

    credit_type: CreditType
    amount: int = Field(default=1, ge=1, le=_MAX_MUTATION_AMOUNT)
    reference: str | None = Field(default=None, max_length=255)


class RefundRequest(BaseModel):
    """Request body for refund.

    Attributes:
        credit_type: Credit type of the deduction.
        deduction_id: transaction_id returned by the deduct call.
        amount: Credits to return (1-1000). Defaults to the whole
            deduction.
    """

    model_config = ConfigDict(extra="forbid")

    credit_type: CreditType
    deduction_id: str = Field(min_length=1, max_length=64)
    amount: int | None = Field(default=None, ge=1, le=_MAX_MUTATION_AMOUNT)


class CreditMutationResponse(BaseModel):
    """Outcome of a successful deduct or refund."""

    model_config = ConfigDict(extra="forbid")

    credit_type: CreditType
    amount: int
    balance: int
    transaction_id: str


class TransactionResponse(BaseModel):
    """One entry of the transaction log.

    Attributes:
        id: Entry id.
        credit_type: Counter that changed.
        direction: debit or credit.
        amount: Positive number of credits moved.
        resulting_balance: Balance after the entry.
        reason: generation, admin_adjustment, purchase, bonus, or refund.
        external_reference: Checkout session id or caller reference.
        description: Free-text note.
        created_at: Entry timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    credit_type: str
    direction: str
    amount: int
    resulting_balance: int
    reason: str
    external_reference: str | None
    description: str | None
    created_at: datetime
