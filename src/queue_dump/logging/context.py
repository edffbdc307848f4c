"""Log context propagation via contextvars."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_domain: ContextVar[Optional[str]] = ContextVar("domain", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_message: ContextVar[Optional[Dict[str, Any]]] = ContextVar("message", default=None)


def set_log_context(
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    run_id: Optional[str] = None,
) -> None:
    """Set context fields injected into every log record. None leaves a field as is."""
    if domain is not None:
        _domain.set(domain)
    if stage is not None:
        _stage.set(stage)
    if run_id is not None:
        _run_id.set(run_id)


def get_log_context() -> Dict[str, Any]:
    return {
        "domain": _domain.get(),
        "stage": _stage.get(),
        "run_id": _run_id.get(),
        "message": _message.get(),
    }


def clear_log_context() -> None:
    _domain.set(None)
    _stage.set(None)
    _run_id.set(None)
    _message.set(None)


class MessageLogContext:
    """
    Attach broker record coordinates to all logs emitted inside the block.

    Usage:
        with MessageLogContext(topic="files", partition=0, offset=42):
            logger.info("Writing file")  # includes topic/partition/offset
    """

    def __init__(
        self,
        topic: str,
        partition: int,
        offset: int,
        key: Optional[str] = None,
    ):
        self.fields: Dict[str, Any] = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
        }
        if key is not None:
            self.fields["key"] = key
        self._token = None

    def __enter__(self) -> "MessageLogContext":
        self._token = _message.set(self.fields)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        _message.reset(self._token)
        self._token = None
