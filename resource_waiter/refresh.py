import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel

T = TypeVar("T")


class ValueNotLoadedError(RuntimeError):
    pass


class CachedValue(BaseModel, Generic[T]):
    value: T
    expires_at: Optional[datetime] = None

    def expired(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        if self.expires_at is None:
            return False
        return now + margin >= self.expires_at


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshingValue(Generic[T]):
    """Keeps a cached value fresh from a background task.

    Only the background task writes the cached value. Readers call ``get()``
    and receive whatever snapshot is current.
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[CachedValue[T]]],
        check_interval: float = 5.0,
        refresh_margin: timedelta = timedelta(0),
        now: Callable[[], datetime] = _utcnow,
    ):
        self.loader = loader
        self.check_interval = check_interval
        self.refresh_margin = refresh_margin
        self.now = now
        self.logger = logger
        self.last_error: Optional[BaseException] = None
        self._cached: Optional[CachedValue[T]] = None
        self._task: Optional[asyncio.Task] = None

    def get(self) -> T:
        cached = self._cached
        if cached is None:
            raise ValueNotLoadedError("Value has not been loaded yet")
        return cached.value

    def needs_refresh(self) -> bool:
        cached = self._cached
        return cached is None or cached.expired(self.now(), self.refresh_margin)

    async def refresh(self) -> None:
        try:
            self._cached = await self.loader()
            self.last_error = None
            self.logger.debug(f"Refreshed value, expires at {self._cached.expires_at}")
        except Exception as e:
            self.last_error = e
            self.logger.error(f"Failed to refresh value: {e}")

    async def _refresh_loop(self) -> None:
        while True:
            if self.needs_refresh():
                await self.refresh()
            await asyncio.sleep(self.check_interval)

    async def start(self) -> None:
        await self.refresh()
        self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "RefreshingValue[T]":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()


class Credentials(BaseModel):
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None
    expiration: Optional[datetime] = None


def sts_session_credentials(
    client: Any, duration_seconds: Optional[int] = None
) -> Callable[[], Awaitable[CachedValue[Credentials]]]:
    """Loader fetching temporary credentials with STS ``GetSessionToken``"""

    async def load() -> CachedValue[Credentials]:
        kwargs = {}
        if duration_seconds is not None:
            kwargs["DurationSeconds"] = duration_seconds
        response = await client.get_session_token(**kwargs)
        raw = response["Credentials"]
        credentials = Credentials(
            access_key_id=raw["AccessKeyId"],
            secret_access_key=raw["SecretAccessKey"],
            session_token=raw.get("SessionToken"),
            expiration=raw.get("Expiration"),
        )
        return CachedValue[Credentials](
            value=credentials, expires_at=credentials.expiration
        )

    return load
