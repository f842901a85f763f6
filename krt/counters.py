from typing import NamedTuple


class CounterState(NamedTuple):
    total_seconds: float
    timestamp_ms: int


class CounterStore:
    """
    Last seen cumulative CPU seconds per container key ("namespace/pod/container").

    Owned by the sampler for the lifetime of the process; a restart starts empty,
    so the first observation of every container reports a zero rate.
    """

    def __init__(self):
        self._states = {}

    def __len__(self):
        return len(self._states)

    def __contains__(self, key):
        return key in self._states

    def get(self, key):
        return self._states.get(key)

    def observe(self, key, total_seconds, timestamp_ms):
        """
        Records a counter observation and returns the CPU rate in millicores
        since the previous one. Returns 0 without a baseline, on counter reset,
        or when time has not advanced.
        """
        prev = self._states.get(key)
        millicores = 0
        if prev is not None and total_seconds >= prev.total_seconds and timestamp_ms > prev.timestamp_ms:
            delta_seconds = total_seconds - prev.total_seconds
            delta_time_seconds = (timestamp_ms - prev.timestamp_ms) / 1000
            millicores = max(0, round(1000 * delta_seconds / delta_time_seconds))
        self._states[key] = CounterState(total_seconds, timestamp_ms)
        return millicores

    def retain(self, keys):
        """
        Forgets every key not in `keys`, e.g. containers of pods gone since the last cycle.
        """
        keys = set(keys)
        for key in list(self._states):
            if key not in keys:
                del self._states[key]
