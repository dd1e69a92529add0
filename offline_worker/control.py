"""
Out-of-band control commands from the host application.

Protocol:
    {"type": "SKIP_WAITING"} -> no reply
    {"type": "GET_VERSION"}  -> {"version": <label>}
    {"type": "CLEAR_CACHE"}  -> {"success": true} once every deletion has settled
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from offline_worker.cache.store import CacheStore
from offline_worker.exceptions import InvalidControlMessage, StoreUnavailableError
from offline_worker.lifecycle import LifecycleManager

logger = logging.getLogger("worker.control")

# A reply port: anything accepting the reply payload
ReplyPort = Callable[[Dict[str, Any]], None]


@dataclass(frozen=True)
class SkipWaiting:
    type = "SKIP_WAITING"


@dataclass(frozen=True)
class GetVersion:
    type = "GET_VERSION"


@dataclass(frozen=True)
class ClearCache:
    type = "CLEAR_CACHE"


ControlMessage = Union[SkipWaiting, GetVersion, ClearCache]

MESSAGE_TYPES = {cls.type: cls for cls in (SkipWaiting, GetVersion, ClearCache)}


def parse_message(data: Any) -> ControlMessage:
    """
    Parse a raw message payload.

    Raises:
        InvalidControlMessage: If the payload has no known "type"
    """
    if not isinstance(data, dict):
        raise InvalidControlMessage(f"Control message must be an object, got {type(data).__name__}")
    message_type = data.get("type")
    if message_type not in MESSAGE_TYPES:
        raise InvalidControlMessage(f"Unknown control message type: {message_type!r}")
    return MESSAGE_TYPES[message_type]()


class ControlChannel:
    """
    Stateless command dispatcher, usable in any lifecycle state.

    Clearing never touches the recorded version: the version label comes
    from the lifecycle's naming scheme, not from the store.
    """

    def __init__(self, store: CacheStore, lifecycle: LifecycleManager):
        self._store = store
        self._lifecycle = lifecycle

    def handle(self, message: ControlMessage) -> Optional[Dict[str, Any]]:
        """Execute a command and return its reply (None for commands without one)."""
        if isinstance(message, SkipWaiting):
            self._lifecycle.skip_waiting()
            return None
        if isinstance(message, GetVersion):
            return {"version": self._lifecycle.version}
        if isinstance(message, ClearCache):
            return self.clear_cache()
        raise InvalidControlMessage(f"Unhandled control message: {message!r}")

    def dispatch(self, data: Any, port: Optional[ReplyPort] = None) -> Optional[Dict[str, Any]]:
        """
        Parse and execute a raw message, posting any reply to the port.

        Unrecognized messages are ignored.
        """
        try:
            message = parse_message(data)
        except InvalidControlMessage as e:
            logger.warning(f"Ignoring control message: {e}")
            return None

        reply = self.handle(message)
        if reply is not None and port is not None:
            port(reply)
        return reply

    def clear_cache(self) -> Dict[str, Any]:
        """Delete every partition of the naming scheme, current ones included."""
        naming = self._lifecycle.naming
        try:
            names = sorted(n for n in self._store.list_partitions() if naming.is_reserved(n))
        except StoreUnavailableError as e:
            logger.error(f"Clear cache failed: {e}")
            return {"success": False, "error": str(e)}

        errors = []
        # Every deletion is attempted and settles before the reply
        for name in names:
            try:
                self._store.delete_partition(name)
            except StoreUnavailableError as e:
                errors.append(str(e))

        if errors:
            logger.error(f"Clear cache failed for {len(errors)} partition(s)")
            return {"success": False, "error": "; ".join(errors)}
        logger.info(f"Cleared {len(names)} cache partition(s)")
        return {"success": True}
