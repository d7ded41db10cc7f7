"""Object graph for the sign-up engine"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from utility_signup.config import Settings, settings as default_settings
from utility_signup.domain.ports import EmailSender, ProviderGateway, UtilityDataStore
from utility_signup.infrastructure.clients.email import EmailClient
from utility_signup.infrastructure.clients.provider import build_provider_gateway
from utility_signup.infrastructure.database.session import get_session_factory
from utility_signup.infrastructure.database.store import DatabaseStore
from utility_signup.services.monitoring import MonitoringScheduler
from utility_signup.services.notifications import NotificationDispatcher
from utility_signup.services.reevaluation import DealReevaluationSweep
from utility_signup.services.registration import RegistrationOrchestrator
from utility_signup.utils.date_utils import utcnow


@dataclass
class SignupEngine:
    store: UtilityDataStore
    gateway: ProviderGateway
    notifier: NotificationDispatcher
    scheduler: MonitoringScheduler
    orchestrator: RegistrationOrchestrator
    sweep: DealReevaluationSweep

    async def startup(self) -> None:
        """Re-arm monitoring left over from a previous process and start the periodic sweep"""
        await self.scheduler.recover()
        await self.sweep.start()

    async def shutdown(self) -> None:
        await self.sweep.stop()
        await self.scheduler.shutdown()


def build_engine(
    config: Settings = default_settings,
    session_factory: Optional[sessionmaker] = None,
    gateway: Optional[ProviderGateway] = None,
    email_sender: Optional[EmailSender] = None,
    clock: Callable[[], datetime] = utcnow,
) -> SignupEngine:
    """Wire the engine from settings; collaborators can be swapped for tests"""
    store = DatabaseStore(session_factory or get_session_factory(), clock=clock)
    gateway = gateway or build_provider_gateway(config.provider_gateway_mode)
    notifier = NotificationDispatcher(store, email_sender or EmailClient(config.email_webhook_url), clock=clock)
    scheduler = MonitoringScheduler(
        store,
        gateway,
        notifier,
        interval_seconds=config.monitor_interval_seconds,
        max_poll_failures=config.max_poll_failures,
        clock=clock,
    )
    orchestrator = RegistrationOrchestrator(
        store,
        gateway,
        scheduler,
        upload_recheck_delay_seconds=config.upload_recheck_delay_seconds,
        clock=clock,
    )
    sweep = DealReevaluationSweep(
        store,
        freshness_days=config.deal_freshness_days,
        threshold=config.better_deal_threshold,
        concurrency=config.sweep_concurrency,
        interval_seconds=config.sweep_interval_seconds,
        offload=not config.database_url.startswith("sqlite"),
        clock=clock,
    )
    return SignupEngine(store, gateway, notifier, scheduler, orchestrator, sweep)
