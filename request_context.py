import sys
import time
import uuid
import logging
import contextvars
from contextlib import contextmanager

NO_REQUEST_ID = "-"

_request_id = contextvars.ContextVar("request_id", default=NO_REQUEST_ID)


def current_request_id() -> str:
    return _request_id.get()


def generate_request_id() -> str:
    """Random version-4 style id: xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx."""
    return str(uuid.uuid4())


@contextmanager
def request_id_scope(request_id: str):
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


async def run_with_request_id(request_id: str, fn, *args, **kwargs):
    """Await fn(*args, **kwargs) with request_id as the ambient id.

    The id survives suspension points inside fn and is inherited by tasks and
    asyncio.to_thread workers started from it. Concurrent tasks each carry
    their own copy of the context, so ids never leak between them.
    """
    with request_id_scope(request_id):
        return await fn(*args, **kwargs)


class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = current_request_id()
        return True


class _MillisecondFormatter(logging.Formatter):
    converter = time.gmtime

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        return f"{time.strftime('%H:%M:%S', ct)}.{int(record.msecs):03d}"


def configure_logging(debug: bool = False, stream=None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(_MillisecondFormatter("[%(asctime)s] [%(request_id)s] %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing.formatter, _MillisecondFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    # Suppress verbose selenium/urllib3 logging
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("selenium.webdriver.remote.remote_connection").setLevel(logging.WARNING)
    return handler
