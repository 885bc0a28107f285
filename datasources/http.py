import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

USER_AGENT = "CraftArbitrage/1.0"

_session_local = threading.local()


def new_session(retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """Session retrying throttled and failed reads against the market API."""
    s = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20, max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
        "Accept-Encoding": "gzip, deflate",
    })
    return s


def get_shared_session() -> requests.Session:
    """One session per thread; connection pools are not shared across threads."""
    s = getattr(_session_local, "session", None)
    if s is None:
        s = new_session()
        _session_local.session = s
    return s
