from datetime import datetime, timezone, timedelta
import time as _time

class TimeProvider:
    """
    Source of engine time: snapshot creation, journal timestamps, profile
    metadata. Injected so tests can shift the clock.
    """

    def __init__(self, offset_seconds: float = 0.0):
        self.offset = offset_seconds

    def now(self) -> datetime:
        """
        Timezone-aware UTC datetime, microseconds stripped so values survive
        an ISO round trip through sqlite unchanged.
        """
        return (
            datetime.now(timezone.utc)
            .replace(microsecond=0)
            + timedelta(seconds=self.offset)
        )

    def iso_now(self) -> str:
        return self.now().isoformat()

    def sleep(self, seconds: float) -> None:
        _time.sleep(seconds)


DEFAULT_TIME_PROVIDER = TimeProvider()
