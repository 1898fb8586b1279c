"""HTTP retrieval with bounded redirects, progress and cancellation."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import HTTPRedirectHandler, OpenerDirector, Request, build_opener

from services.provision.cancellation import CancelToken
from services.provision.constants import (
    DOWNLOAD_CHUNK_SIZE,
    MAX_REDIRECTS,
    REQUEST_TIMEOUT_SECONDS,
)
from services.provision.models import (
    DownloadFailedError,
    DownloadTransfer,
    NetworkError,
    OperationCancelled,
    TooManyRedirectsError,
)

_LOGGER = logging.getLogger(__name__)

__all__ = ["Opener", "ProgressCallback", "RetrievingClient", "build_no_redirect_opener"]

ProgressCallback = Callable[[DownloadTransfer], None]


class Opener(Protocol):
    """Subset of :class:`urllib.request.OpenerDirector` used by the client."""

    def open(self, fullurl: Request, data: bytes | None = None, timeout: float = ...) -> Any:
        ...


class _NoRedirectHandler(HTTPRedirectHandler):
    """Surface 3xx responses to the caller instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[override]
        return None


def build_no_redirect_opener() -> OpenerDirector:
    return build_opener(_NoRedirectHandler())


class RetrievingClient:
    """Download a URL into memory.

    Redirects are followed by the client itself so the depth can be capped and
    every hop shares one :class:`DownloadTransfer`.  No retries are attempted;
    a retry policy belongs to the caller.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        opener: Opener | None = None,
        max_redirects: int = MAX_REDIRECTS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        self._user_agent = user_agent
        self._opener = opener if opener is not None else build_no_redirect_opener()
        self._max_redirects = max(0, int(max_redirects))
        self._timeout = timeout
        self._chunk_size = max(1, int(chunk_size))

    @property
    def user_agent(self) -> str:
        return self._user_agent

    def fetch(
        self,
        url: str,
        cancel_token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> bytes:
        token = cancel_token if cancel_token is not None else CancelToken()
        transfer = DownloadTransfer(url=url)
        current_url = url
        while True:
            token.raise_if_cancelled()
            response = self._open(current_url, token)
            try:
                status = _status_of(response)
                if status is not None and 200 <= status < 300:
                    return self._read_body(response, transfer, token, on_progress)
                location = _header(response, "Location")
                if status is not None and 300 <= status < 400 and location:
                    if transfer.redirects >= self._max_redirects:
                        raise TooManyRedirectsError(url, self._max_redirects)
                    next_url = urljoin(current_url, location)
                    transfer.redirects += 1
                    _LOGGER.debug(
                        "Following redirect %s -> %s (%s/%s)",
                        current_url,
                        next_url,
                        transfer.redirects,
                        self._max_redirects,
                    )
                    current_url = next_url
                    transfer.url = next_url
                    continue
                raise DownloadFailedError(current_url, status, _reason_of(response))
            finally:
                _close_quietly(response)

    def _open(self, url: str, token: CancelToken) -> Any:
        request = Request(url, headers={"User-Agent": self._user_agent}, method="GET")
        _LOGGER.debug("GET %s", url)
        try:
            return self._opener.open(request, timeout=self._timeout)
        except HTTPError as exc:
            # Non-2xx responses (including unfollowed redirects) arrive as HTTPError.
            return exc
        except (URLError, OSError) as exc:
            if token.cancelled:
                raise OperationCancelled(token.reason or "Download cancelled") from exc
            reason = getattr(exc, "reason", exc)
            raise NetworkError(url, reason if isinstance(reason, BaseException) else exc) from exc

    def _read_body(
        self,
        response: Any,
        transfer: DownloadTransfer,
        token: CancelToken,
        on_progress: ProgressCallback | None,
    ) -> bytes:
        transfer.expected_length = _parse_content_length(_header(response, "Content-Length"))
        transfer.bytes_received = 0
        chunks: list[bytes] = []
        unregister = token.add_callback(lambda: _close_quietly(response))
        try:
            while True:
                token.raise_if_cancelled()
                try:
                    chunk = response.read(self._chunk_size)
                except (OSError, ValueError, AttributeError) as exc:
                    # Closing the response from the cancelling thread breaks the pending read.
                    if token.cancelled:
                        raise OperationCancelled(token.reason or "Download cancelled") from exc
                    raise NetworkError(transfer.url, exc) from exc
                if not chunk:
                    break
                chunks.append(chunk)
                transfer.bytes_received += len(chunk)
                if on_progress is not None:
                    on_progress(transfer)
        finally:
            unregister()
        token.raise_if_cancelled()
        _LOGGER.debug("Received %s bytes from %s", transfer.bytes_received, transfer.url)
        return b"".join(chunks)


def _status_of(response: Any) -> int | None:
    status = getattr(response, "status", None)
    if status is None:
        status = getattr(response, "code", None)
    if isinstance(status, int):
        return status
    return None


def _reason_of(response: Any) -> str | None:
    reason = getattr(response, "reason", None)
    if reason is None:
        reason = getattr(response, "msg", None)
    return str(reason) if reason is not None else None


def _header(response: Any, name: str) -> str | None:
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    value = headers.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_content_length(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        length = int(raw, 10)
    except ValueError:
        return None
    if length < 0:
        return None
    return length


def _close_quietly(response: Any) -> None:
    close = getattr(response, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception:
        _LOGGER.debug("Failed to close response", exc_info=True)
