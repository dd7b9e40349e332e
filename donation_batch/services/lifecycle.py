"""
BatchLifecycle -- owner of the Batch aggregate.

Contract:
    Every mutation of a settlement batch goes through this service.  It
    enforces the transition table of ``domain.transitions``, the financial
    gates (gross deposit, settlement reserve), and cascades terminal
    outcomes onto member donations in the same unit of work.

Architecture: donation_batch/services.  Imports from donation_batch.domain,
    donation_batch.models, the gateway contracts and kernel utilities.

Invariants enforced:
    - Input and state checks run before any side effect.
    - A donation is claimed by at most one batch: conditional UPDATE on
      ``status == 'pending' AND batch_id IS NULL`` inside a SAVEPOINT.
    - Terminal batches are immutable (BatchImmutableError).
    - Status changes only after the external call's result is known.
    - completed -> donations sent; failed/cancelled -> donations failed.
    - Batch rows are loaded FOR UPDATE (no-op on SQLite).

Failure modes:
    - ValidationError subclasses for bad input.
    - StateError subclasses for illegal operations.
    - ReserveShortfallError when the batch is below the settlement minimum.
    - ExternalServiceError when a gateway fails; for payment and on-chain
      dispatch the batch is moved to ``failed`` first and the caller must
      persist that state.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT retry gateway calls.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from donation_kernel.domain.clock import Clock, SystemClock
from donation_kernel.domain.money import ZERO, quantize_amount, quantize_cents, to_decimal
from donation_kernel.exceptions import (
    BatchImmutableError,
    BatchNotFoundError,
    DonationNotFoundError,
    EmptyInputError,
    ExternalServiceError,
    GrossDepositRequiredError,
    InvalidAmountError,
    InvalidStateTransitionError,
    MissingWalletError,
    NoPendingDonationsError,
    ReserveShortfallError,
    TransactionNotFoundError,
)
from donation_kernel.logging_config import get_logger
from donation_config.schema import PipelineConfig

from donation_batch.domain.batch import (
    BatchDetails,
    BatchMetadata,
    BatchPage,
    BatchRecord,
    ErrorDetail,
    FeePayment,
    GrossDeposit,
    OperationalFee,
    ReserveSummary,
    SettlementReserve,
)
from donation_batch.domain.fees import (
    allocations_for,
    calculate_batch_fees,
    settlement_reserve,
)
from donation_batch.domain.transitions import is_terminal, require_transition
from donation_batch.domain.types import (
    BatchStatus,
    BlockchainTransactionRecord,
    DonationRecord,
    DonationStatus,
    ExchangeRateSnapshot,
    LandingChecklist,
    OperationalFeeStatus,
    PaymentInitiation,
    ReserveStatus,
    SettlementQuote,
    SettlementRoute,
    TransactionStatus,
)
from donation_batch.models.batch import BatchDonationModel, BatchModel
from donation_batch.models.donation import DonationModel, FeeAllocationModel
from donation_batch.models.transaction import BlockchainTransactionModel
from donation_batch.services.gateways import (
    BlockchainGateway,
    GatewayCaller,
    PaymentGateway,
    RateProvider,
)

logger = get_logger("batch.lifecycle")

SUCCESS_CALLBACK_STATUSES = frozenset({"success", "completed"})
FAILURE_CALLBACK_STATUSES = frozenset({"failed", "rejected"})

_DRAFT_STATUSES = (BatchStatus.DRAFT, BatchStatus.PENDING)
_SENDABLE_STATUSES = frozenset({
    BatchStatus.AWAITING_SETTLEMENT,
    BatchStatus.SENDING,
    BatchStatus.NEEDS_RECONCILIATION,
})


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class BatchLifecycle:
    """Batch aggregate service.

    Contract:
        - ``create()`` claims pending donations and materializes a draft batch.
        - Financial gates: ``set_gross_deposit()``,
          ``record_operational_fee_payment()``, ``get_reserve()``.
        - Operator flow: ``process()`` -> ``initiate_settlement()`` ->
          ``handle_settlement_callback()`` -> ``send_on_chain()``.
        - Internal transitions: ``complete()``, ``fail()``,
          ``hold_for_reconciliation()``, ``mark_sending()``,
          ``mark_awaiting_settlement()``.
        - ``cancel()`` from any non-terminal state.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        config: PipelineConfig | None = None,
        gateways: GatewayCaller | None = None,
        rate_provider: RateProvider | None = None,
        payment_gateway: PaymentGateway | None = None,
        blockchain_gateway: BlockchainGateway | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or PipelineConfig()
        self._gateways = gateways or GatewayCaller(self._config.timeouts)
        self._rates = rate_provider
        self._payments = payment_gateway
        self._blockchain = blockchain_gateway
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Loading helpers
    # -------------------------------------------------------------------------

    def _load(self, batch_id: UUID | str, lock: bool = True) -> BatchModel:
        try:
            key = batch_id if isinstance(batch_id, UUID) else UUID(str(batch_id))
        except ValueError:
            raise BatchNotFoundError(batch_id=str(batch_id)) from None

        stmt = select(BatchModel).where(BatchModel.id == key)
        if lock:
            stmt = stmt.with_for_update()
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise BatchNotFoundError(batch_id=str(batch_id))
        return model

    @staticmethod
    def _status(model: BatchModel) -> BatchStatus:
        return BatchStatus(model.status)

    def _require_mutable(self, model: BatchModel, operation: str) -> None:
        status = self._status(model)
        if is_terminal(status):
            raise BatchImmutableError(str(model.id), status.value, operation)

    def _transition(self, model: BatchModel, target: BatchStatus) -> None:
        current = self._status(model)
        require_transition(model.id, current, target)
        model.status = target.value
        logger.info(
            "batch_status_changed",
            extra={
                "batch_id": str(model.id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )

    def _update_metadata(self, model: BatchModel, **changes: Any) -> BatchMetadata:
        metadata = replace(model.metadata_record, **changes)
        model.metadata_record = metadata
        return metadata

    def _error(self, code: str, message: str) -> ErrorDetail:
        return ErrorDetail(code=code, message=message, recorded_at=self._clock.now())

    def _cascade_donations(self, model: BatchModel, target: DonationStatus) -> int:
        """Move every batched member donation to ``target``."""
        values: dict[str, Any] = {"status": target.value}
        if target == DonationStatus.SENT:
            values["processed_at"] = self._clock.now()
        result = self._session.execute(
            update(DonationModel)
            .where(
                DonationModel.batch_id == model.id,
                DonationModel.status == DonationStatus.BATCHED.value,
            )
            .values(**values)
        )
        if target == DonationStatus.SENT:
            self._session.execute(
                update(FeeAllocationModel)
                .where(FeeAllocationModel.batch_id == model.id)
                .values(transferred=True)
            )
        logger.info(
            "batch_donations_released",
            extra={
                "batch_id": str(model.id),
                "donation_status": target.value,
                "count": result.rowcount,
            },
        )
        return result.rowcount

    @staticmethod
    def _batch_number(batch_id: UUID, now: datetime) -> str:
        # Unique per batch id, no shared per-day counter
        return f"BATCH-{now:%Y%m%d}-{batch_id.hex[:12].upper()}"

    def _fail_model(
        self,
        model: BatchModel,
        code: str,
        message: str,
        manual_intervention: bool = False,
    ) -> None:
        self._transition(model, BatchStatus.FAILED)
        self._update_metadata(
            model,
            error=self._error(code, message),
            manual_intervention_required=manual_intervention,
        )
        self._cascade_donations(model, DonationStatus.FAILED)
        self._session.flush()
        logger.error(
            "batch_failed",
            extra={
                "batch_id": str(model.id),
                "error_code": code,
                "error_message": message,
                "manual_intervention_required": manual_intervention,
            },
        )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create(
        self,
        donation_ids: Sequence[UUID],
        target_wallet: str | None,
        campaign_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> BatchRecord:
        """Claim pending donations and create a draft batch.

        Raises:
            EmptyInputError: If ``donation_ids`` is empty.
            MissingWalletError: If ``target_wallet`` is blank.
            NoPendingDonationsError: If any requested donation is missing or
                no longer pending.  Nothing is claimed in that case.
        """
        if not donation_ids:
            raise EmptyInputError("donation_ids")
        if not target_wallet or not target_wallet.strip():
            raise MissingWalletError()

        ids = list(dict.fromkeys(donation_ids))
        now = self._clock.now()
        batch_id = uuid4()

        savepoint = self._session.begin_nested()
        try:
            model = BatchModel(
                id=batch_id,
                batch_number=self._batch_number(batch_id, now),
                status=BatchStatus.DRAFT.value,
                total_gross_eur=ZERO,
                total_debt_fee_eur=ZERO,
                total_operational_fee_eur=ZERO,
                total_transaction_fee_eur=ZERO,
                total_net_eur=ZERO,
                donation_count=0,
                target_wallet=target_wallet.strip(),
                network=self._config.settlement.network,
                created_by_id=actor_id,
                batch_metadata=BatchMetadata().to_dict(),
            )
            model.created_at = now
            self._session.add(model)
            self._session.flush()

            self._session.execute(
                update(DonationModel)
                .where(
                    DonationModel.id.in_(ids),
                    DonationModel.status == DonationStatus.PENDING.value,
                    DonationModel.batch_id.is_(None),
                )
                .values(
                    status=DonationStatus.BATCHED.value,
                    batch_id=batch_id,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session=False)
            )

            claimed = {
                row.id: row
                for row in self._session.execute(
                    select(DonationModel)
                    .where(DonationModel.batch_id == batch_id)
                    .execution_options(populate_existing=True)
                ).scalars()
            }
            unavailable = [str(i) for i in ids if i not in claimed]
            if unavailable:
                savepoint.rollback()
                for row in claimed.values():
                    self._session.expire(row)
                logger.warning(
                    "batch_claim_rejected",
                    extra={
                        "requested": len(ids),
                        "unavailable_count": len(unavailable),
                    },
                )
                raise NoPendingDonationsError(unavailable)

            donations = [claimed[i].to_dto() for i in ids]
            totals = calculate_batch_fees(donations)

            model.total_gross_eur = totals.total_gross_eur
            model.total_debt_fee_eur = totals.total_debt_fee_eur
            model.total_operational_fee_eur = totals.total_operational_fee_eur
            model.total_transaction_fee_eur = totals.total_transaction_fee_eur
            model.total_net_eur = totals.total_net_eur
            model.donation_count = totals.donation_count
            model.campaign_id = campaign_id or donations[0].campaign_id

            for position, donation in enumerate(donations):
                model.links.append(
                    BatchDonationModel(
                        donation_id=donation.donation_id,
                        position=position,
                        created_by_id=actor_id,
                    )
                )
                for spec in allocations_for(donation, self._config.fees):
                    self._session.add(
                        FeeAllocationModel(
                            donation_id=donation.donation_id,
                            batch_id=batch_id,
                            fee_type=spec.fee_type.value,
                            percent=spec.percent,
                            amount=spec.amount,
                            destination=spec.destination,
                            transferred=False,
                            created_by_id=actor_id,
                        )
                    )

            self._session.flush()
            savepoint.commit()
        except NoPendingDonationsError:
            raise
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise

        logger.info(
            "batch_created",
            extra={
                "batch_id": str(batch_id),
                "batch_number": model.batch_number,
                "donation_count": totals.donation_count,
                "total_net_eur": totals.total_net_eur,
                "target_wallet": model.target_wallet,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Financial gates
    # -------------------------------------------------------------------------

    def get_reserve(self, batch_id: UUID) -> ReserveStatus:
        model = self._load(batch_id, lock=False)
        return settlement_reserve(
            model.total_net_eur, self._config.settlement.minimum_purchase_eur,
        )

    def set_gross_deposit(
        self, batch_id: UUID, amount_eur, note: str | None = None,
    ) -> OperationalFeeStatus:
        """Record the operator-confirmed deposit and derive the withholding.

        Raises:
            InvalidAmountError: If amount <= 0.
            BatchImmutableError: If the batch is terminal.
        """
        amount = self._positive(amount_eur, "amount_eur")
        model = self._load(batch_id)
        self._require_mutable(model, "set_gross_deposit")

        metadata = model.metadata_record
        current = quantize_cents(amount * self._config.fees.operational_withholding_rate)
        fee = replace(
            metadata.operational_fee,
            current_eur=current,
            due_eur=max(current - metadata.operational_fee.paid_eur, ZERO),
        )
        self._update_metadata(
            model,
            gross_deposit=GrossDeposit(
                amount_eur=amount, note=note, recorded_at=self._clock.now(),
            ),
            operational_fee=fee,
        )
        self._session.flush()

        logger.info(
            "gross_deposit_recorded",
            extra={
                "batch_id": str(model.id),
                "amount_eur": amount,
                "operational_fee_eur": current,
            },
        )
        return self._fee_status(model)

    def operational_fee_status(self, batch_id: UUID) -> OperationalFeeStatus:
        return self._fee_status(self._load(batch_id, lock=False))

    def record_operational_fee_payment(
        self, batch_id: UUID, amount_eur, note: str | None = None,
    ) -> OperationalFeeStatus:
        amount = self._positive(amount_eur, "amount_eur")
        model = self._load(batch_id)
        self._require_mutable(model, "record_operational_fee_payment")

        fee = model.metadata_record.operational_fee
        paid = fee.paid_eur + amount
        fee = OperationalFee(
            current_eur=fee.current_eur,
            paid_eur=paid,
            due_eur=max(fee.current_eur - paid, ZERO),
            payments=fee.payments + (
                FeePayment(amount_eur=amount, note=note, recorded_at=self._clock.now()),
            ),
        )
        self._update_metadata(model, operational_fee=fee)
        self._session.flush()

        logger.info(
            "operational_fee_payment_recorded",
            extra={
                "batch_id": str(model.id),
                "amount_eur": amount,
                "due_eur": fee.due_eur,
            },
        )
        return self._fee_status(model)

    @staticmethod
    def _positive(value, field: str) -> Decimal:
        try:
            amount = to_decimal(value)
        except ValueError as exc:
            raise InvalidAmountError(value, field) from exc
        if amount <= 0:
            raise InvalidAmountError(value, field)
        return amount

    @staticmethod
    def _fee_status(model: BatchModel) -> OperationalFeeStatus:
        metadata = model.metadata_record
        fee = metadata.operational_fee
        return OperationalFeeStatus(
            gross_deposit_eur=(
                metadata.gross_deposit.amount_eur if metadata.gross_deposit else None
            ),
            current_eur=fee.current_eur,
            paid_eur=fee.paid_eur,
            due_eur=fee.due_eur,
        )

    # -------------------------------------------------------------------------
    # Operator flow
    # -------------------------------------------------------------------------

    def process(self, batch_id: UUID) -> BatchRecord:
        """Snapshot the settlement rate and move the batch to ``processing``.

        Raises:
            InvalidStateTransitionError: If the batch is not a draft.
            GrossDepositRequiredError: If no deposit has been recorded.
            ExternalServiceError: If the rate lookup fails or returns a
                non-numeric, non-positive or expired rate.  The batch is
                left untouched.
        """
        model = self._load(batch_id)
        status = self._status(model)
        if status not in _DRAFT_STATUSES:
            raise InvalidStateTransitionError(
                str(model.id), status.value, BatchStatus.PROCESSING.value,
            )
        if model.metadata_record.gross_deposit is None:
            raise GrossDepositRequiredError(str(model.id))
        if self._rates is None:
            raise ExternalServiceError("rate_provider", "get_rate", "not configured")

        settlement = self._config.settlement
        snapshot = self._gateways.call(
            "rate_provider",
            "get_rate",
            self._rates.get_rate,
            settlement.base_currency,
            settlement.settlement_currency,
            timeout=self._gateways.timeouts.rate_seconds,
        )
        now = self._clock.now()
        rate = self._checked_rate(snapshot, now)

        reserve = settlement_reserve(model.total_net_eur, settlement.minimum_purchase_eur)
        model.target_amount = quantize_amount(model.total_net_eur * rate)
        model.settlement_currency = settlement.settlement_currency
        model.conversion_rate = rate
        model.rate_source = snapshot.source
        model.rate_valid_from = snapshot.valid_from
        model.rate_valid_to = snapshot.valid_to
        model.processed_at = now
        self._update_metadata(
            model,
            settlement_reserve=SettlementReserve(
                minimum_eur=reserve.minimum_eur, required_eur=reserve.required_eur,
            ),
        )
        self._transition(model, BatchStatus.PROCESSING)
        self._session.flush()

        logger.info(
            "batch_processed",
            extra={
                "batch_id": str(model.id),
                "rate": rate,
                "rate_source": snapshot.source,
                "target_amount": model.target_amount,
                "reserve_required_eur": reserve.required_eur,
            },
        )
        return model.to_dto()

    @staticmethod
    def _checked_rate(snapshot: ExchangeRateSnapshot, now: datetime) -> Decimal:
        """Validate a rate quote before any batch field is written."""
        try:
            rate = to_decimal(snapshot.rate)
        except ValueError as exc:
            raise ExternalServiceError(
                "rate_provider", "get_rate", f"unusable rate {snapshot.rate!r}",
            ) from exc
        if rate <= ZERO:
            raise ExternalServiceError(
                "rate_provider", "get_rate", f"non-positive rate {rate}",
            )
        valid_to = snapshot.valid_to
        if valid_to is not None:
            if _as_utc(valid_to) < _as_utc(now):
                raise ExternalServiceError(
                    "rate_provider", "get_rate", f"rate expired at {valid_to.isoformat()}",
                )
        return rate

    def initiate_settlement(
        self, batch_id: UUID, user_context: Mapping[str, Any] | None = None,
    ) -> PaymentInitiation:
        """Request a payment-gateway quote for a processed batch.

        Raises:
            InvalidStateTransitionError: Unless the batch is ``processing``.
            ReserveShortfallError: If the batch is below the minimum.
            ExternalServiceError: If the gateway fails; the batch is failed.
        """
        model = self._load(batch_id)
        status = self._status(model)
        if status != BatchStatus.PROCESSING:
            raise InvalidStateTransitionError(
                str(model.id), status.value, BatchStatus.AWAITING_SETTLEMENT.value,
            )

        reserve = settlement_reserve(
            model.total_net_eur, self._config.settlement.minimum_purchase_eur,
        )
        if reserve.required_eur > 0:
            raise ReserveShortfallError(
                str(model.id), reserve.minimum_eur, reserve.required_eur,
            )
        if self._payments is None:
            raise ExternalServiceError("payment_gateway", "initiate", "not configured")

        quote = SettlementQuote(
            batch_id=model.id,
            batch_number=model.batch_number,
            fiat_amount=model.total_net_eur,
            fiat_currency=self._config.settlement.base_currency,
            crypto_amount=model.target_amount,
            crypto_currency=model.settlement_currency or self._config.settlement.settlement_currency,
            destination_wallet=model.target_wallet,
            network=model.network,
            user_context=dict(user_context or {}),
        )

        try:
            initiation = self._gateways.call(
                "payment_gateway",
                "initiate",
                self._payments.initiate,
                quote,
                timeout=self._gateways.timeouts.payment_seconds,
            )
        except ExternalServiceError as exc:
            self._fail_model(model, exc.code, str(exc))
            raise

        model.quote_id = initiation.quote_id
        model.settlement_route = SettlementRoute.PAYMENT_GATEWAY.value
        model.settlement_initiated_at = self._clock.now()
        metadata = model.metadata_record.with_refs(
            quote_id=initiation.quote_id,
            payment_id=initiation.payment_id,
            payment_url=initiation.payment_url,
        )
        model.metadata_record = metadata
        self._transition(model, BatchStatus.AWAITING_SETTLEMENT)
        self._session.flush()

        logger.info(
            "settlement_initiated",
            extra={
                "batch_id": str(model.id),
                "quote_id": initiation.quote_id,
                "payment_id": initiation.payment_id,
            },
        )
        return initiation

    def handle_settlement_callback(self, payload: Mapping[str, Any]) -> BatchRecord:
        """Apply a payment-gateway status notification.

        Success statuses move the batch to ``sending``; failure statuses fail
        it.  Anything else is recorded without a transition.  Callbacks for
        terminal batches change nothing.

        Raises:
            EmptyInputError: If the payload carries no quote id.
            BatchNotFoundError: If no batch has that quote id.
        """
        quote_id = payload.get("quote_id")
        if not quote_id:
            raise EmptyInputError("quote_id")
        provider_status = str(payload.get("status") or "").strip().lower()

        model = self._session.execute(
            select(BatchModel).where(BatchModel.quote_id == str(quote_id)).with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise BatchNotFoundError(quote_id=str(quote_id))

        status = self._status(model)
        if is_terminal(status):
            logger.info(
                "settlement_callback_ignored",
                extra={
                    "batch_id": str(model.id),
                    "batch_status": status.value,
                    "provider_status": provider_status,
                },
            )
            return model.to_dto()

        if provider_status in SUCCESS_CALLBACK_STATUSES:
            if status not in (BatchStatus.AWAITING_SETTLEMENT, BatchStatus.SENDING):
                raise InvalidStateTransitionError(
                    str(model.id), status.value, BatchStatus.SENDING.value,
                )
            self._update_metadata(model, callback_status=provider_status)
            self._transition(model, BatchStatus.SENDING)
        elif provider_status in FAILURE_CALLBACK_STATUSES:
            self._update_metadata(model, callback_status=provider_status)
            message = str(payload.get("error") or f"provider reported {provider_status}")
            self._fail_model(model, "SETTLEMENT_PROVIDER_FAILED", message)
        else:
            self._update_metadata(model, callback_status=provider_status or None)

        self._session.flush()
        logger.info(
            "settlement_callback_applied",
            extra={
                "batch_id": str(model.id),
                "quote_id": str(quote_id),
                "provider_status": provider_status,
                "batch_status": model.status,
            },
        )
        return model.to_dto()

    def send_on_chain(self, batch_id: UUID) -> BatchRecord:
        """Broadcast the settlement transfer to the batch wallet.

        Raises:
            InvalidStateTransitionError: Unless awaiting settlement, sending,
                or held for reconciliation.
            InvalidAmountError: If the batch has no target amount.
            ExternalServiceError: If the broadcast fails; the batch is failed.
        """
        model = self._load(batch_id)
        status = self._status(model)
        if status not in _SENDABLE_STATUSES:
            raise InvalidStateTransitionError(
                str(model.id), status.value, BatchStatus.SENDING.value,
            )
        if model.target_amount is None or model.target_amount <= 0:
            raise InvalidAmountError(model.target_amount, "target_amount")
        if self._blockchain is None:
            raise ExternalServiceError("blockchain", "send", "not configured")

        try:
            tx_hash = self._gateways.call(
                "blockchain",
                "send",
                self._blockchain.send,
                model.target_wallet,
                model.target_amount,
                timeout=self._gateways.timeouts.blockchain_seconds,
            )
        except ExternalServiceError as exc:
            self._fail_model(model, exc.code, str(exc))
            raise

        now = self._clock.now()
        transaction = BlockchainTransactionModel(
            batch_id=model.id,
            tx_hash=tx_hash,
            from_address=self._blockchain.source_address,
            to_address=model.target_wallet,
            amount=model.target_amount,
            currency=model.settlement_currency or self._config.settlement.settlement_currency,
            network=model.network,
            status=TransactionStatus.PROCESSING.value,
            confirmations=0,
        )
        transaction.created_at = now
        self._session.add(transaction)

        model.sent_at = now
        metadata = model.metadata_record.with_refs(tx_hash=tx_hash)
        model.metadata_record = replace(metadata, manual_intervention_required=False)
        self._transition(model, BatchStatus.SENDING)
        self._session.flush()

        logger.info(
            "batch_sent_on_chain",
            extra={
                "batch_id": str(model.id),
                "tx_hash": tx_hash,
                "amount": model.target_amount,
                "to_address": model.target_wallet,
            },
        )
        return model.to_dto()

    def cancel(self, batch_id: UUID, reason: str | None = None) -> BatchRecord:
        """Cancel a non-terminal batch.  Idempotent on cancelled batches.

        Raises:
            BatchImmutableError: If the batch is completed or failed.
        """
        model = self._load(batch_id)
        status = self._status(model)
        if status == BatchStatus.CANCELLED:
            return model.to_dto()
        self._require_mutable(model, "cancel")

        self._transition(model, BatchStatus.CANCELLED)
        if reason:
            self._update_metadata(model, error=self._error("CANCELLED", reason))
        self._cascade_donations(model, DonationStatus.FAILED)
        self._session.flush()

        logger.info(
            "batch_cancelled",
            extra={"batch_id": str(model.id), "from_status": status.value, "reason": reason},
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Internal transitions (strategy executor, monitor)
    # -------------------------------------------------------------------------

    def mark_sending(
        self,
        batch_id: UUID,
        route: SettlementRoute,
        provider_references: Sequence[str] = (),
    ) -> BatchRecord:
        model = self._load(batch_id)
        self._transition(model, BatchStatus.SENDING)
        model.settlement_route = route.value
        model.settlement_initiated_at = model.settlement_initiated_at or self._clock.now()
        if provider_references:
            refs = model.metadata_record.external_refs
            model.metadata_record = model.metadata_record.with_refs(
                provider_references=refs.provider_references + tuple(provider_references),
            )
        self._session.flush()
        return model.to_dto()

    def mark_awaiting_settlement(
        self,
        batch_id: UUID,
        route: SettlementRoute,
        bank_references: Sequence[str] = (),
    ) -> BatchRecord:
        model = self._load(batch_id)
        self._transition(model, BatchStatus.AWAITING_SETTLEMENT)
        model.settlement_route = route.value
        model.settlement_initiated_at = self._clock.now()
        refs = model.metadata_record.external_refs
        model.metadata_record = model.metadata_record.with_refs(
            bank_references=refs.bank_references + tuple(bank_references),
        )
        self._session.flush()
        return model.to_dto()

    def complete(self, batch_id: UUID, block_number: int | None = None) -> BatchRecord:
        """Mark the batch completed and its donations sent."""
        model = self._load(batch_id)
        self._transition(model, BatchStatus.COMPLETED)
        model.completed_at = self._clock.now()
        if block_number is not None:
            model.block_number = block_number
        self._update_metadata(model, manual_intervention_required=False)
        self._cascade_donations(model, DonationStatus.SENT)
        self._session.flush()

        logger.info(
            "batch_completed",
            extra={
                "batch_id": str(model.id),
                "block_number": block_number,
                "donation_count": model.donation_count,
            },
        )
        return model.to_dto()

    def fail(
        self,
        batch_id: UUID,
        error_code: str,
        message: str,
        manual_intervention: bool = False,
    ) -> BatchRecord:
        model = self._load(batch_id)
        self._fail_model(model, error_code, message, manual_intervention)
        return model.to_dto()

    def hold_for_reconciliation(self, batch_id: UUID, reason: str) -> BatchRecord:
        """Park a batch whose on-chain outcome needs operator review.

        Donations stay batched; the operator may resend, fail, or cancel.
        """
        model = self._load(batch_id)
        self._transition(model, BatchStatus.NEEDS_RECONCILIATION)
        self._update_metadata(
            model,
            error=self._error("ON_CHAIN_FAILURE", reason),
            manual_intervention_required=True,
        )
        self._session.flush()

        logger.warning(
            "batch_held_for_reconciliation",
            extra={"batch_id": str(model.id), "reason": reason},
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_batch(self, batch_id: UUID) -> BatchRecord:
        return self._load(batch_id, lock=False).to_dto()

    def get_batch_details(self, batch_id: UUID) -> BatchDetails:
        model = self._load(batch_id, lock=False)
        donations = {
            d.id: d
            for d in self._session.execute(
                select(DonationModel).where(DonationModel.batch_id == model.id)
            ).scalars()
        }
        transactions = self._session.execute(
            select(BlockchainTransactionModel)
            .where(BlockchainTransactionModel.batch_id == model.id)
            .order_by(BlockchainTransactionModel.created_at)
        ).scalars()
        allocations = self._session.execute(
            select(FeeAllocationModel)
            .where(FeeAllocationModel.batch_id == model.id)
            .order_by(FeeAllocationModel.donation_id, FeeAllocationModel.fee_type)
        ).scalars()

        return BatchDetails(
            batch=model.to_dto(),
            donations=tuple(
                donations[link.donation_id].to_dto()
                for link in model.links
                if link.donation_id in donations
            ),
            transactions=tuple(t.to_dto() for t in transactions),
            fee_allocations=tuple(a.to_dto() for a in allocations),
        )

    def get_donation(self, donation_id: UUID) -> DonationRecord:
        model = self._session.get(DonationModel, donation_id)
        if model is None:
            raise DonationNotFoundError(str(donation_id))
        return model.to_dto()

    def get_transaction(self, tx_hash: str) -> BlockchainTransactionRecord:
        model = self._session.execute(
            select(BlockchainTransactionModel).where(
                BlockchainTransactionModel.tx_hash == tx_hash,
            )
        ).scalar_one_or_none()
        if model is None:
            raise TransactionNotFoundError(tx_hash)
        return model.to_dto()

    def list_batches(
        self,
        status: BatchStatus | str | None = None,
        campaign_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> BatchPage:
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 100)

        filters = []
        if status is not None:
            filters.append(BatchModel.status == BatchStatus(status).value)
        if campaign_id is not None:
            filters.append(BatchModel.campaign_id == campaign_id)

        total = self._session.execute(
            select(func.count(BatchModel.id)).where(*filters)
        ).scalar_one()
        rows = self._session.execute(
            select(BatchModel)
            .where(*filters)
            .order_by(BatchModel.created_at.desc(), BatchModel.batch_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()

        return BatchPage(
            items=tuple(row.to_dto() for row in rows),
            total=total,
            page=page,
            limit=limit,
        )

    def reserve_summary(self, day: date | None = None) -> ReserveSummary:
        """Reserve position across the batches created on ``day``."""
        day = day or self._clock.today()
        start = datetime.combine(day, time.min, tzinfo=self._clock.now().tzinfo)
        end = start + timedelta(days=1)
        minimum = self._config.settlement.minimum_purchase_eur

        rows = self._session.execute(
            select(BatchModel)
            .where(BatchModel.created_at >= start, BatchModel.created_at < end)
            .order_by(BatchModel.batch_number)
        ).scalars().all()

        total_net = ZERO
        total_required = ZERO
        eligible = 0
        shortfall: list[UUID] = []
        for row in rows:
            reserve = settlement_reserve(row.total_net_eur, minimum)
            total_net += row.total_net_eur
            total_required += reserve.required_eur
            if reserve.eligible:
                eligible += 1
            else:
                shortfall.append(row.id)

        return ReserveSummary(
            day=day,
            batch_count=len(rows),
            total_net_eur=total_net,
            total_required_eur=total_required,
            eligible_count=eligible,
            shortfall_batch_ids=tuple(shortfall),
        )

    def landing_checklist(self, batch_id: UUID) -> LandingChecklist:
        model = self._load(batch_id, lock=False)
        metadata = model.metadata_record
        status = self._status(model)
        fee = metadata.operational_fee
        reserve = settlement_reserve(
            model.total_net_eur, self._config.settlement.minimum_purchase_eur,
        )
        return LandingChecklist(
            deposit_recorded=metadata.gross_deposit is not None,
            operational_fee_computed=fee.current_eur > 0,
            operational_fee_paid=fee.current_eur > 0 and fee.due_eur == 0,
            batch_processed=model.processed_at is not None,
            settlement_minimum_eligible=reserve.eligible,
            settlement_initiated=model.settlement_initiated_at is not None,
            on_chain_sent=metadata.external_refs.tx_hash is not None,
            batch_completed=status == BatchStatus.COMPLETED,
        )
