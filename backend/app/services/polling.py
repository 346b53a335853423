"""
Background device polling.

One APScheduler interval job per account lists the account's devices from
the inventory API and appends a state-change event whenever a device's
connectivity differs from the last status seen by this process. A separate
fast-poll path retries a single-device lookup with exponential backoff.

PollingState lives only in the PollingScheduler instance and is mutated
under a per-(account, device) lock, so the bulk tick and fast-poll
confirmation never write the same device's state concurrently.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from app.config import settings
from app.database import AsyncSessionLocal
from app.exceptions import UpstreamUnavailable
from app.models.availability import StateChangeEvent
from app.models.polling import PollingConfig, ApiToken
from app.schemas.availability import PollingConfigUpdate, PollingStats
from app.services.event_log import as_utc, record_event
from app.services.inventory_client import InventoryClient
from app.services.system_log import log_system_event

logger = logging.getLogger(__name__)


@dataclass
class PollingState:
    last_status: Optional[str] = None
    last_check_time: Optional[datetime] = None
    failure_count: int = 0


async def get_polling_config(db: AsyncSession, account_id: int) -> PollingConfig:
    """Return the account's polling config, creating the default one on first use."""
    result = await db.execute(select(PollingConfig).where(PollingConfig.account_id == account_id))
    config = result.scalar_one_or_none()
    if config:
        return config

    config = PollingConfig(
        account_id=account_id,
        polling_interval_seconds=settings.POLLING_INTERVAL_SECONDS,
        fast_polling_interval_seconds=settings.FAST_POLLING_INTERVAL_SECONDS,
        fast_polling_retries=settings.FAST_POLL_RETRIES,
        enabled=True,
    )
    db.add(config)
    await db.commit()
    await db.refresh(config)
    return config


async def update_polling_config(
    db: AsyncSession,
    account_id: int,
    updates: PollingConfigUpdate,
) -> PollingConfig:
    config = await get_polling_config(db, account_id)
    for key, value in updates.model_dump(exclude_none=True).items():
        setattr(config, key, value)
    await db.commit()
    await db.refresh(config)
    return config


async def get_valid_credential(db: AsyncSession, account_id: int) -> str:
    """Latest unexpired inventory API token for the account."""
    result = await db.execute(
        select(ApiToken)
        .where(ApiToken.account_id == account_id)
        .order_by(ApiToken.created_at.desc(), ApiToken.id.desc())
        .limit(1)
    )
    token = result.scalar_one_or_none()
    if not token:
        raise UpstreamUnavailable(f"No API token for account {account_id}")
    if as_utc(token.expires_at) <= datetime.now(timezone.utc):
        raise UpstreamUnavailable(f"API token for account {account_id} has expired")
    return token.access_token


def status_from_device(device: dict) -> str:
    connected = device.get("connected")
    if not isinstance(connected, bool):
        raise ValueError(f"Device {device.get('id')} has no connectivity flag")
    return "up" if connected else "down"


class PollingScheduler:
    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        inventory: Optional[InventoryClient] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.session_factory = session_factory
        self.inventory = inventory or InventoryClient()
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._states: dict[tuple[int, str], PollingState] = {}
        self._locks: dict[tuple[int, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            logger.info(f"Stopping polling scheduler ({len(self.scheduler.get_jobs())} accounts active)")
            self.scheduler.shutdown(wait=False)

    @staticmethod
    def _job_id(account_id: int) -> str:
        return f"poll_account_{account_id}"

    def is_running(self, account_id: int) -> bool:
        return self.scheduler.get_job(self._job_id(account_id)) is not None

    async def start_all(self) -> int:
        """Start polling for every account with polling enabled."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PollingConfig.account_id).where(PollingConfig.enabled == True)  # noqa: E712
            )
            account_ids = [row[0] for row in result.all()]

        logger.info(f"Initializing polling for {len(account_ids)} accounts")
        started = 0
        for account_id in account_ids:
            try:
                if await self.start_account(account_id):
                    started += 1
            except Exception as e:
                logger.error(f"Failed to start polling for account {account_id}: {e}")
        return started

    async def start_account(self, account_id: int) -> bool:
        """(Re)schedule the account's polling job; the first tick runs immediately."""
        self.stop_account(account_id)

        async with self.session_factory() as db:
            config = await get_polling_config(db, account_id)
        if not config.enabled:
            logger.info(f"Polling disabled for account {account_id}")
            return False

        await self.restore_state(account_id)

        self.scheduler.add_job(
            self.poll_account,
            "interval",
            seconds=config.polling_interval_seconds,
            args=[account_id],
            id=self._job_id(account_id),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        logger.info(
            f"Started polling for account {account_id} "
            f"(interval: {config.polling_interval_seconds}s)"
        )
        return True

    def stop_account(self, account_id: int) -> None:
        """Prevent further ticks. A tick already running completes normally."""
        job = self.scheduler.get_job(self._job_id(account_id))
        if job:
            job.remove()
            logger.info(f"Stopped polling for account {account_id}")

    async def refresh_account(self, account_id: int) -> bool:
        """Apply a changed config to a running account."""
        async with self.session_factory() as db:
            config = await get_polling_config(db, account_id)
        if not config.enabled:
            self.stop_account(account_id)
            return False
        if self.is_running(account_id):
            return await self.start_account(account_id)
        return False

    async def restore_state(self, account_id: int) -> int:
        """Seed missing PollingState entries from each device's latest event.

        Events sharing the latest timestamp resolve to the highest id.
        """
        async with self.session_factory() as db:
            latest = (
                select(
                    StateChangeEvent.device_id,
                    func.max(StateChangeEvent.occurred_at).label("occurred_at"),
                )
                .where(StateChangeEvent.account_id == account_id)
                .group_by(StateChangeEvent.device_id)
                .subquery()
            )
            result = await db.execute(
                select(StateChangeEvent)
                .join(latest, and_(
                    StateChangeEvent.device_id == latest.c.device_id,
                    StateChangeEvent.occurred_at == latest.c.occurred_at,
                ))
                .where(StateChangeEvent.account_id == account_id)
                .order_by(StateChangeEvent.id.desc())
            )
            events = result.scalars().all()

        restored = 0
        for event in events:
            key = (account_id, event.device_id)
            async with self._locks[key]:
                if key in self._states:
                    continue
                self._states[key] = PollingState(last_status=event.status)
                restored += 1
        return restored

    # ── Bulk polling ────────────────────────────────────────────────────────

    async def poll_account(self, account_id: int) -> int:
        """One polling tick. Returns the number of status changes recorded.

        A tick without a usable credential or device list is skipped; a
        failure on one device leaves its state untouched and moves on.
        """
        try:
            async with self.session_factory() as db:
                credential = await get_valid_credential(db, account_id)
            devices = await self.inventory.list_devices(credential)
        except UpstreamUnavailable as e:
            logger.warning(f"Skipping polling tick for account {account_id}: {e}")
            await log_system_event(
                self.session_factory, "warning", "polling", "tick_skipped",
                f"Polling tick skipped: {e}", account_id=account_id,
            )
            return 0
        except Exception as e:
            logger.error(f"Error polling devices for account {account_id}: {e}")
            await log_system_event(
                self.session_factory, "error", "polling", "tick_failed",
                "Polling tick failed", account_id=account_id, details=str(e),
            )
            return 0

        changes = 0
        for device in devices:
            device_id = str(device.get("id")) if isinstance(device, dict) else str(device)
            try:
                if await self._apply_polled_status(account_id, device):
                    changes += 1
            except Exception as e:
                logger.warning(f"Polling failed for device {device_id} (account {account_id}): {e}")
                await log_system_event(
                    self.session_factory, "warning", "polling", "device_poll_failed",
                    f"Polling failed for device {device_id}",
                    account_id=account_id, resource_id=device_id, details=str(e),
                )
        return changes

    async def _apply_polled_status(self, account_id: int, device: dict) -> bool:
        device_id = str(device["id"])
        status = status_from_device(device)
        key = (account_id, device_id)

        async with self._locks[key]:
            state = self._states.get(key)
            previous = state.last_status if state else None
            now = datetime.now(timezone.utc)

            if previous != status:
                async with self.session_factory() as db:
                    await record_event(
                        db, account_id, device_id, status, "polling",
                        reason="Device is connected" if status == "up" else "Device is disconnected",
                    )
                if previous is None:
                    logger.info(f"Initial state for device {device_id}: {status}")
                else:
                    logger.info(f"State change detected for device {device_id}: {previous} -> {status}")
                self._states[key] = PollingState(last_status=status, last_check_time=now)
                return previous is not None

            state.last_check_time = now
            return False

    # ── Fast polling ────────────────────────────────────────────────────────

    async def _fast_poll(
        self,
        account_id: int,
        device_id: str,
        max_retries: int,
        base_delay: float,
    ) -> tuple[str, int]:
        try:
            async with self.session_factory() as db:
                credential = await get_valid_credential(db, account_id)
        except UpstreamUnavailable as e:
            logger.warning(f"Fast poll for device {device_id} skipped: {e}")
            return "unknown", 0

        last_error: Optional[Exception] = None
        for attempt in range(1, max_retries + 1):
            try:
                detail = await asyncio.wait_for(
                    self.inventory.get_device(credential, device_id),
                    timeout=settings.FAST_POLL_ATTEMPT_TIMEOUT_SECONDS,
                )
                status = status_from_device(detail)
                logger.info(f"Fast poll device {device_id} status: {status} (attempt {attempt}/{max_retries})")
                return status, attempt
            except Exception as e:
                last_error = e

            if attempt < max_retries:
                delay = base_delay * 2 ** (attempt - 1)
                logger.info(f"Fast poll retry {attempt}/{max_retries} for device {device_id} in {delay:.1f}s")
                await asyncio.sleep(delay)

        logger.error(f"Fast poll device {device_id} failed after {max_retries} attempts: {last_error!r}")
        await log_system_event(
            self.session_factory, "warning", "fast_poll", "fast_poll_exhausted",
            f"Fast poll failed after {max_retries} attempts",
            account_id=account_id, resource_id=device_id, details=repr(last_error),
        )
        return "unknown", max_retries

    async def fast_poll(
        self,
        account_id: int,
        device_id: str,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> str:
        """Query one device with exponential backoff; "up", "down" or "unknown".

        Does not read or update PollingState.
        """
        max_retries = settings.FAST_POLL_RETRIES if max_retries is None else max_retries
        base_delay = settings.FAST_POLL_BASE_DELAY_SECONDS if base_delay is None else base_delay
        status, _ = await self._fast_poll(account_id, device_id, max_retries, base_delay)
        return status

    async def confirm_device(
        self,
        account_id: int,
        device_id: str,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> tuple[str, bool]:
        """Fast-poll a device and record a fast_polling event if its status changed.

        Returns (status, recorded).
        """
        max_retries = settings.FAST_POLL_RETRIES if max_retries is None else max_retries
        base_delay = settings.FAST_POLL_BASE_DELAY_SECONDS if base_delay is None else base_delay
        status, attempts = await self._fast_poll(account_id, device_id, max_retries, base_delay)

        key = (account_id, device_id)
        async with self._locks[key]:
            state = self._states.get(key)
            now = datetime.now(timezone.utc)
            if status == "unknown":
                if state:
                    state.failure_count += 1
                return status, False
            if state and state.last_status == status:
                state.last_check_time = now
                state.failure_count = 0
                return status, False

            async with self.session_factory() as db:
                await record_event(
                    db, account_id, device_id, status, "fast_polling",
                    reason="Confirmed by fast poll",
                    retry_attempts=max(0, attempts - 1),
                )
            self._states[key] = PollingState(last_status=status, last_check_time=now)
            return status, True

    def get_polling_stats(self, account_id: int, device_id: str) -> PollingStats:
        state = self._states.get((account_id, device_id))
        return PollingStats(
            last_status=state.last_status if state else None,
            last_check_time=state.last_check_time if state else None,
            failure_count=state.failure_count if state else 0,
            running=self.is_running(account_id),
        )
