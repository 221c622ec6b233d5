import json
import hashlib
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, TypeVar


T = TypeVar("T")


def stable_hash(obj: Any) -> str:
    txt = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(txt.encode("utf-8")).hexdigest()


def _namespaced_key(ns: str, key: str) -> str:
    return f"{ns}:{key}"


class SingleFlight:
    """Coalesces concurrent calls that share a key into one execution.

    The first caller for a key runs ``fn``; callers arriving while it is in
    flight block on the same future and get its result (or its exception).
    Nothing is remembered once the call completes.
    """

    def __init__(self):
        self.inflight: Dict[str, Future] = {}
        self.lock = threading.Lock()

    def do(self, ns: str, key: str, fn: Callable[[], T]) -> T:
        nk = _namespaced_key(ns, key)
        with self.lock:
            fut = self.inflight.get(nk)
            leader = fut is None
            if leader:
                fut = Future()
                self.inflight[nk] = fut

        if not leader:
            return fut.result()

        try:
            result = fn()
        except BaseException as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            with self.lock:
                self.inflight.pop(nk, None)

    def pending(self, ns: str, key: str) -> bool:
        with self.lock:
            return _namespaced_key(ns, key) in self.inflight
