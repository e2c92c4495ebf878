"""
Structured logging for the chain service.

JSON lines by default, a colored console at DEBUG. Service modules log
through stdlib ``logging``; block and contract notifications go through the
structlog ``chain.events`` logger. Both end up in the same handler.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

from .config import settings

# Event-dict keys that may carry an RPC URL with an embedded API key
_ENDPOINT_KEYS = ("endpoint", "endpoint_url", "rpc_url")


def mask_endpoint(url: str) -> str:
    """Hide API keys that providers embed in the final path segment of an RPC URL."""
    if not url:
        return url
    scheme, sep, rest = url.partition("://")
    if not sep:
        return url
    host, slash, path = rest.partition("/")
    if not slash or not path:
        return url
    segments = path.split("/")
    last = segments[-1]
    if len(last) >= 16:
        segments[-1] = f"{last[:4]}...{last[-4:]}"
    return f"{scheme}://{host}/{'/'.join(segments)}"


def mask_endpoints(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in _ENDPOINT_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = mask_endpoint(value)
    return event_dict


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Route structlog and stdlib records through one stdout handler.

    Args:
        log_level: Override for settings.log_level
        json_logs: Force JSON (True) or console (False) rendering; by default
            only DEBUG gets the console renderer
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        mask_endpoints,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every JSON-RPC POST at INFO
    for name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)
