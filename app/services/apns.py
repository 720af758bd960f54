"""
Apple Push Notification service fan-out for Wallet pass updates.

A pass update is announced with an empty push to every device registered
for the serial. The device then asks the update feed what changed and
fetches the new pass. Sends run concurrently and a failing device never
affects the others.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable

from aioapns import APNs, NotificationRequest
from starlette.concurrency import run_in_threadpool

from app.core.errors import DeliveryError, ProviderConfigurationError
from app.domain.models import DeliveryOutcome, DispatchReport, PushJob, utcnow
from app.repositories.device import DeviceRepository
from app.repositories.wallet_pass import WalletPassRepository

logger = logging.getLogger(__name__)


class PushProvider:
    """Process-wide APNs channel with an explicit start/stop lifecycle.

    Uses token (.p8 key) authentication; aioapns signs the ES256 provider
    token and refreshes it before it expires.
    """

    def __init__(
        self,
        pass_type_id: str,
        key_path: str = "",
        key_id: str = "",
        team_id: str = "",
        use_sandbox: bool = False,
        client_factory: Callable[[], APNs] | None = None,
    ):
        self.pass_type_id = pass_type_id
        self.key_path = key_path
        self.key_id = key_id
        self.team_id = team_id
        self.use_sandbox = use_sandbox
        self._client_factory = client_factory or self._create_client
        self._client: APNs | None = None

    @property
    def topic(self) -> str:
        return self.pass_type_id

    @property
    def running(self) -> bool:
        return self._client is not None

    def _create_client(self) -> APNs:
        return APNs(
            key=self.key_path,
            key_id=self.key_id,
            team_id=self.team_id,
            topic=self.pass_type_id,
            use_sandbox=self.use_sandbox,
        )

    def start(self) -> None:
        """Create the APNs client once.

        With no APNs settings at all push stays disabled. Incomplete
        settings or a missing key file fail fast.

        Raises:
            ProviderConfigurationError: If the configuration is unusable.
        """
        if self._client is not None:
            return

        if not self.key_path and not self.key_id:
            logger.warning("APNs key not configured. Push notifications disabled.")
            return

        missing = [
            name for name, value in (
                ("APNS_KEY_PATH", self.key_path),
                ("APNS_KEY_ID", self.key_id),
                ("APNS_TEAM_ID", self.team_id),
                ("APPLE_PASS_TYPE_ID", self.pass_type_id),
            )
            if not value
        ]
        if missing:
            raise ProviderConfigurationError(f"APNs configuration incomplete, missing {', '.join(missing)}")

        if not Path(self.key_path).is_file():
            raise ProviderConfigurationError(f"APNs key not found: {self.key_path}")

        self._client = self._client_factory()
        logger.info(f"APNs client ready (topic={self.pass_type_id}, sandbox={self.use_sandbox})")

    def stop(self) -> None:
        if self._client is not None:
            logger.info("APNs client released")
        self._client = None

    def require_running(self) -> None:
        if self._client is None:
            raise ProviderConfigurationError("Push provider is not configured")

    @property
    def client(self) -> APNs:
        self.require_running()
        return self._client


class PushDispatcher:
    """Notifies every device registered for a pass that it changed."""

    def __init__(self, provider: PushProvider, send_timeout: float = 10.0):
        self.provider = provider
        self.send_timeout = send_timeout

    async def _deliver(self, client: APNs, job: PushJob) -> None:
        request = NotificationRequest(
            device_token=job.push_token,
            message=job.payload,
            apns_topic=job.topic,
        )

        try:
            response = await asyncio.wait_for(
                client.send_notification(request), timeout=self.send_timeout
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError("Push timed out", job.push_token, status="timeout") from e
        except Exception as e:
            raise DeliveryError(f"Push error: {e}", job.push_token) from e

        if not response.is_successful:
            raise DeliveryError(
                f"Push failed: {response.description}",
                job.push_token,
                status=str(response.status),
            )

    async def _send(self, client: APNs, job: PushJob) -> DeliveryOutcome:
        try:
            await self._deliver(client, job)
        except DeliveryError as e:
            logger.warning(f"{e.message} ({job.push_token[:20]}..., status={e.status})")
            return DeliveryOutcome(
                push_token=job.push_token,
                success=False,
                status=e.status,
                description=e.message,
            )

        logger.info(f"Push sent successfully to {job.push_token[:20]}...")
        return DeliveryOutcome(push_token=job.push_token, success=True, status="200")

    async def send_to_all_devices(self, push_tokens: list[str]) -> list[DeliveryOutcome]:
        """Send one empty push per token; every token gets its own outcome."""
        client = self.provider.client
        jobs = [PushJob(push_token=token, topic=self.provider.topic) for token in dict.fromkeys(push_tokens)]
        return list(await asyncio.gather(*(self._send(client, job) for job in jobs)))

    async def notify_pass_update(self, serial_number: str) -> DispatchReport:
        """Mark a pass as updated and push to all of its devices.

        Raises:
            ProviderConfigurationError: If push is not configured. Checked
                before anything is touched.
        """
        self.provider.require_running()

        now = utcnow()
        await run_in_threadpool(DeviceRepository.mark_serial_updated, serial_number, now)
        await run_in_threadpool(WalletPassRepository.touch, serial_number, now)

        push_tokens = await run_in_threadpool(DeviceRepository.list_push_tokens, serial_number)
        report = DispatchReport(serial_number=serial_number)

        if not push_tokens:
            logger.info(f"No devices registered for pass {serial_number[:8]}...")
            return report

        report.outcomes = await self.send_to_all_devices(push_tokens)
        logger.info(
            f"Push notifications for {serial_number[:8]}...: "
            f"{report.success} successful, {report.failed} failed"
        )
        return report


def create_push_provider() -> PushProvider:
    """Factory function to create PushProvider from settings."""
    from app.core.config import settings

    return PushProvider(
        pass_type_id=settings.apple_pass_type_id,
        key_path=settings.apns_key_path,
        key_id=settings.apns_key_id,
        team_id=settings.apns_team,
        use_sandbox=settings.apns_use_sandbox,
    )
