"""Deal re-evaluation sweep - re-prices active contracts and flags ones with a cheaper tariff"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from utility_signup.config import settings
from utility_signup.domain.exceptions import NoEligibleTariff, StaleComparisonFailure
from utility_signup.domain.models import SweepReport, UtilityContract
from utility_signup.domain.ports import UtilityDataStore
from utility_signup.domain.selection import is_better_deal, rank_tariffs, select_cheapest_tariff
from utility_signup.infrastructure.observability.logging import log_sweep_outcome
from utility_signup.infrastructure.observability.metrics import deal_sweep_counter
from utility_signup.services.transitions import append_note
from utility_signup.utils.date_utils import utcnow

BEST_DEAL = "best_deal"
BETTER_DEAL_FOUND = "better_deal_found"
FAILED = "failed"


class DealReevaluationSweep:
    """
    Periodic re-pricing of active contracts.

    A contract is flagged (`best_deal_available = False`) when the cheapest
    eligible tariff undercuts its current annual cost (monthly payment x 12)
    by more than `threshold`. `last_deal_check` is written for every contract
    processed, including failures, so one bad contract cannot stall the sweep
    or be retried on every pass.
    """

    def __init__(
        self,
        store: UtilityDataStore,
        freshness_days: int | None = None,
        threshold: float | None = None,
        concurrency: int | None = None,
        interval_seconds: float | None = None,
        offload: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.freshness = timedelta(days=freshness_days if freshness_days is not None else settings.deal_freshness_days)
        self.threshold = threshold if threshold is not None else settings.better_deal_threshold
        self.concurrency = concurrency or settings.sweep_concurrency
        self.interval_seconds = interval_seconds or settings.sweep_interval_seconds
        # Blocking store calls go to worker threads; needs a pooled engine, not one shared connection
        self.offload = offload
        self.clock = clock
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the periodic sweep loop"""
        if self.running:
            logging.warning("Deal sweep is already running")
            return
        self.running = True
        logging.info("Starting deal sweep loop", extra={"step": "deal_sweep", "interval_seconds": self.interval_seconds})
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self.running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _loop(self) -> None:
        while self.running:
            try:
                await self.run_once()
            except Exception as e:
                logging.error(f"Error in deal sweep loop: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> SweepReport:
        """Re-price every active contract not checked within the freshness window"""
        start_time = time.time()
        now = self.clock()
        report = SweepReport()

        due = []
        for contract in self.store.list_active_contracts():
            if contract.last_deal_check is not None and now - contract.last_deal_check < self.freshness:
                report.skipped_fresh += 1
                deal_sweep_counter.labels(outcome="skipped_fresh").inc()
            else:
                due.append(contract)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(contract: UtilityContract) -> str:
            async with semaphore:
                return await self.reevaluate(contract, now)

        outcomes = await asyncio.gather(*(guarded(contract) for contract in due))

        tally: Dict[str, int] = {BEST_DEAL: 0, BETTER_DEAL_FOUND: 0, FAILED: 0}
        for outcome in outcomes:
            tally[outcome] += 1
        report.checked = len(due)
        report.better_deal_found = tally[BETTER_DEAL_FOUND]
        report.failed = tally[FAILED]

        duration_ms = (time.time() - start_time) * 1000
        log_sweep_outcome(report.checked, report.skipped_fresh, report.better_deal_found, report.failed, duration_ms)
        return report

    async def reevaluate(self, contract: UtilityContract, now: datetime) -> str:
        """Re-price one contract; failures are logged and recorded, never raised"""
        try:
            if self.offload:
                loop = asyncio.get_running_loop()
                outcome = await loop.run_in_executor(None, self._reprice, contract, now)
            else:
                outcome = self._reprice(contract, now)
        except Exception as e:
            failure = e if isinstance(e, StaleComparisonFailure) else StaleComparisonFailure(contract.id, str(e))
            logging.warning(str(failure), extra={"contract_id": contract.id, "step": "deal_sweep"})
            deal_sweep_counter.labels(outcome=FAILED).inc()
            self._mark_checked_after_failure(contract, now, str(failure))
            return FAILED

        deal_sweep_counter.labels(outcome=outcome).inc()
        return outcome

    def _reprice(self, contract: UtilityContract, now: datetime) -> str:
        prop = self.store.get_property_by_id(contract.property_id)
        if prop is None:
            raise StaleComparisonFailure(contract.id, f"property {contract.property_id} not found")

        tariffs = self.store.get_tariffs_by_type(contract.utility_type)
        providers = self.store.get_providers_by_type(contract.utility_type)
        try:
            best = select_cheapest_tariff(contract.utility_type, tariffs, providers, now=now, postcode=prop.postcode)
        except NoEligibleTariff as e:
            raise StaleComparisonFailure(contract.id, str(e)) from e

        current_annual_cost = contract.monthly_payment_amount * 12
        better = is_better_deal(best.estimated_annual_cost, current_annual_cost, self.threshold)
        fields = {"last_deal_check": now, "best_deal_available": not better}

        if contract.tariff_id is not None:
            current_tariff = next((t for t in tariffs if t.id == contract.tariff_id), None)
            if current_tariff is None or not current_tariff.is_available(now):
                fields["tariff_id"] = None
                fields["notes"] = append_note(contract.notes, f"Tariff {contract.tariff_id} is no longer available", now)

        self.store.update_contract(contract.id, **fields)

        if not better:
            return BEST_DEAL

        results = rank_tariffs(
            contract.utility_type,
            tariffs,
            providers,
            current_annual_cost=current_annual_cost,
            now=now,
            postcode=prop.postcode,
        )
        self.store.save_price_comparison(prop.id, contract.utility_type, results)
        logging.info(
            "Better deal available",
            extra={
                "contract_id": contract.id,
                "step": "deal_sweep",
                "current_annual_cost": str(current_annual_cost),
                "best_annual_cost": str(best.estimated_annual_cost),
                "best_tariff_id": best.id,
            },
        )
        return BETTER_DEAL_FOUND

    def _mark_checked_after_failure(self, contract: UtilityContract, now: datetime, reason: str) -> None:
        try:
            self.store.update_contract(
                contract.id,
                last_deal_check=now,
                notes=append_note(contract.notes, f"Deal check failed: {reason}", now),
            )
        except Exception as e:
            logging.error(
                f"Could not record failed deal check: {e}",
                extra={"contract_id": contract.id, "step": "deal_sweep"},
            )
