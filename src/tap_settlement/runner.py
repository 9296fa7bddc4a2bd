"""Single bounded settlement pass for an external scheduler (cron, serverless).

The pass never sleeps or loops; transfers that are not ready are left where
they are and picked up by the next invocation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from .exceptions import AttestationNotReadyError
from .logging_config import generate_correlation_id, settlement_context
from .models import TransferRecord, TransferStatus, utcnow
from .services.bridge import BridgeOrchestrator
from .store import SettlementStore

logger = logging.getLogger(__name__)


@dataclass
class SettlementPassReport:
    started: int = 0
    completed: int = 0
    pending: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    unpaid_transfers: list[str] = field(default_factory=list)
    stalled_transfers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "completed": self.completed,
            "pending": self.pending,
            "failed": self.failed,
            "errors": list(self.errors),
            "unpaid_transfers": list(self.unpaid_transfers),
            "stalled_transfers": list(self.stalled_transfers),
        }


class SettlementRunner:
    """Drives every active transfer one step forward."""

    def __init__(
        self,
        store: SettlementStore,
        orchestrator: BridgeOrchestrator,
        batch_size: int = 50,
        stalled_after_seconds: int = 3600,
    ):
        self._store = store
        self._orchestrator = orchestrator
        self._batch_size = batch_size
        self._stalled_after = timedelta(seconds=stalled_after_seconds)

    async def run_once(self, limit: Optional[int] = None) -> SettlementPassReport:
        limit = limit or self._batch_size
        report = SettlementPassReport()

        with settlement_context(correlation_id=generate_correlation_id()):
            burns = await self._store.list_transfers_by_status([TransferStatus.PENDING_BURN], limit=limit)
            for transfer in burns:
                await self._step(transfer, report, start=True)

            polls = await self._store.list_transfers_by_status(
                [TransferStatus.PENDING_ATTESTATION, TransferStatus.PENDING_MINT], limit=limit,
            )
            for transfer in polls:
                await self._step(transfer, report, start=False)

            unpaid = await self._store.find_unpaid_completed_transfers(limit=limit)
            report.unpaid_transfers = [t.transfer_id for t in unpaid]
            stalled = await self._store.find_stalled_transfers(utcnow() - self._stalled_after, limit=limit)
            report.stalled_transfers = [t.transfer_id for t in stalled]

            logger.info(
                "Settlement pass: started=%d completed=%d pending=%d failed=%d errors=%d unpaid=%d stalled=%d",
                report.started, report.completed, report.pending, report.failed,
                len(report.errors), len(report.unpaid_transfers), len(report.stalled_transfers),
            )
        return report

    async def _step(self, transfer: TransferRecord, report: SettlementPassReport, start: bool) -> None:
        try:
            if start:
                result = await self._orchestrator.start_bridge_for_payment(transfer.payment_id)
            else:
                result = await self._orchestrator.poll_attestation_and_mint(transfer.transfer_id)
        except AttestationNotReadyError:
            report.pending += 1
            return
        except Exception as e:
            # The orchestrator has already persisted whatever failure state applies
            logger.error("Transfer %s: %s", transfer.transfer_id, e, exc_info=True)
            report.errors.append({
                "transfer_id": transfer.transfer_id,
                "error": type(e).__name__,
                "message": str(e),
            })
            current = await self._store.get_transfer(transfer.transfer_id)
            if current is None:
                return
            if current.status is TransferStatus.FAILED:
                report.failed += 1
            elif current.status is TransferStatus.COMPLETED:
                # Payout failed after the mint; listed again under unpaid_transfers
                report.completed += 1
            return

        status = result.transfer.status if result.transfer else None
        if status is TransferStatus.COMPLETED:
            report.completed += 1
        elif status is TransferStatus.FAILED:
            report.failed += 1
        elif start and status is TransferStatus.PENDING_ATTESTATION:
            report.started += 1
        else:
            report.pending += 1


__all__ = ["SettlementPassReport", "SettlementRunner"]
