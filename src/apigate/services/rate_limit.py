from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from loguru import logger

from apigate.errors import InvalidLimits
from apigate.models import RateLimits, UsageRecord, utc_now
from apigate.stores import RateLimitStore, UsageStore

# window name -> (bucket key format, counter TTL in seconds)
WINDOWS = {
    "minute": ("%Y%m%d%H%M", 2 * 60),
    "hour": ("%Y%m%d%H", 2 * 60 * 60),
    "day": ("%Y%m%d", 2 * 24 * 60 * 60),
}


def bucket_keys(now: datetime) -> Dict[str, str]:
    return {window: f"{window}#{now.strftime(fmt)}" for window, (fmt, _) in WINDOWS.items()}


class RateLimitService:
    """
    Per API key counters over minute, hour and day windows.

    Checks fail open: if the counters cannot be read the request is allowed.
    Availability of the API is preferred over strict enforcement.
    """

    def __init__(
        self,
        store: RateLimitStore,
        usage: UsageStore,
        default_limits: Optional[RateLimits] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.usage = usage
        self.default_limits = default_limits or RateLimits()
        self.clock = clock

    def check_rate_limit(self, api_key_id: str, tenant_id: str, endpoint: str) -> bool:
        return self.exceeded_window(api_key_id, tenant_id, endpoint) is None

    def exceeded_window(self, api_key_id: str, tenant_id: str, endpoint: str) -> Optional[str]:
        """Name of the first window ("minute", "hour" or "day") at its threshold, or None if the request may proceed."""
        try:
            limits = self.store.get_limits(api_key_id) or self.default_limits
            buckets = bucket_keys(self.clock())
            counts = self.store.get_counts(api_key_id, list(buckets.values()))
        except Exception as e:
            logger.warning(f"Rate limit lookup failed for key {api_key_id}, allowing request: {e}")
            return None

        thresholds = {"minute": limits.per_minute, "hour": limits.per_hour, "day": limits.per_day}
        for window, bucket in buckets.items():
            if counts.get(bucket, 0) >= thresholds[window]:
                logger.info(
                    f"Rate limit exceeded for key {api_key_id} (tenant {tenant_id}) on {endpoint}: "
                    f"{counts[bucket]}/{thresholds[window]} per {window}"
                )
                return window
        return None

    def record_usage(
        self,
        api_key_id: str,
        tenant_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        response_time: int,
    ) -> None:
        """Append a usage record and bump the window counters. Never raises."""
        now = self.clock()
        try:
            self.usage.append(UsageRecord(
                api_key_id=api_key_id,
                tenant_id=tenant_id,
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                response_time_ms=response_time,
                timestamp=now,
            ))
            ttls = {window: ttl for window, (_, ttl) in WINDOWS.items()}
            self.store.increment(api_key_id, {bucket: ttls[window] for window, bucket in bucket_keys(now).items()})
        except Exception as e:
            logger.error(f"Failed to record usage for key {api_key_id}: {e}")

    def update_api_key_limits(
        self,
        api_key_id: str,
        tenant_id: str,
        limits: Union[RateLimits, Dict[str, int]],
    ) -> RateLimits:
        if isinstance(limits, dict):
            try:
                limits = RateLimits(**limits)
            except ValueError as e:
                raise InvalidLimits(str(e)) from e
        if min(limits.per_minute, limits.per_hour, limits.per_day) <= 0:
            raise InvalidLimits()
        if not limits.per_minute <= limits.per_hour <= limits.per_day:
            raise InvalidLimits("Limits must satisfy per_minute <= per_hour <= per_day")

        self.store.put_limits(api_key_id, tenant_id, limits)
        logger.info(f"Updated rate limits for key {api_key_id}: {limits.model_dump()}")
        return limits

    def get_api_key_limits(self, api_key_id: str) -> RateLimits:
        return self.store.get_limits(api_key_id) or self.default_limits

    def get_usage(self, api_key_id: str, limit: int = 100) -> List[UsageRecord]:
        return self.usage.list_for_key(api_key_id, limit=limit)
