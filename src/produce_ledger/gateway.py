"""Persistence gateways for the produce ledger.

The core talks to storage only through the two-method
:class:`PersistenceGateway` contract. ``load`` fails soft and returns an
empty ledger on any error; ``save`` reports success as a boolean and logs
failures instead of raising them. Two backends are provided: a local
openpyxl workbook and the remote ledger server over HTTP.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Sequence
from zipfile import BadZipFile

import requests
from openpyxl.utils.exceptions import InvalidFileException

from . import data_manager, log
from .ledger import LedgerError, TransactionRecord
from .setup_excel import create_ledger_workbook


class PersistenceError(LedgerError):
    """Raised when the ledger cannot be read from or written to storage."""


class AuthenticationRequired(PersistenceError):
    """Raised when the ledger server rejects the session credentials."""


class PersistenceGateway(Protocol):
    """Contract consumed by the controller."""

    def load(self) -> List[TransactionRecord]:
        ...

    def save(self, records: Sequence[TransactionRecord]) -> bool:
        ...


class WorkbookGateway:
    """Store the ledger on the ``Transactions`` sheet of a local workbook.

    Every save rewrites the whole sheet, so the last writer wins at the
    granularity of the full ledger.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()

    def fetch(self) -> List[TransactionRecord]:
        """Read the ledger, raising :class:`PersistenceError` on failure.

        A workbook that does not exist yet is an empty ledger.
        """

        if not self.data_file.exists():
            log.info("Workbook '%s' does not exist yet; starting empty", self.data_file)
            return []
        try:
            workbook = data_manager.open_workbook(self.data_file)
            return list(data_manager.iter_transactions(workbook))
        except (OSError, KeyError, ValueError, InvalidFileException, BadZipFile) as exc:
            raise PersistenceError(f"Unable to read workbook '{self.data_file}': {exc}") from exc

    def store(self, records: Sequence[TransactionRecord]) -> None:
        """Write the ledger, raising :class:`PersistenceError` on failure."""

        try:
            if not self.data_file.exists():
                create_ledger_workbook(self.data_file)
            workbook = data_manager.open_workbook(self.data_file)
            written = data_manager.write_transactions(workbook, records)
            data_manager.save_workbook(workbook, self.data_file)
        except (OSError, KeyError, ValueError, InvalidFileException, BadZipFile) as exc:
            raise PersistenceError(f"Unable to write workbook '{self.data_file}': {exc}") from exc
        log.info("Saved %d transactions to '%s'", written, self.data_file)

    def load(self) -> List[TransactionRecord]:
        try:
            records = self.fetch()
        except PersistenceError as exc:
            log.error("%s", exc)
            return []
        log.info("Loaded %d transactions from '%s'", len(records), self.data_file)
        return records

    def save(self, records: Sequence[TransactionRecord]) -> bool:
        try:
            self.store(records)
        except PersistenceError as exc:
            log.error("%s", exc)
            return False
        return True


class HttpGateway:
    """Exchange the ledger with the remote ledger server.

    ``GET /transactions`` returns the owner's ledger and ``POST /transactions``
    replaces it wholesale. The bearer token is attached to every request when
    known. A ``401`` response clears the token and triggers
    ``on_unauthorized`` so the front-end can send the user to a login surface;
    the core never inspects credentials itself.

    ``on_unauthorized`` runs on whichever thread performed the request. Behind
    a :class:`BackgroundSaver` that is the ``ledger-save`` worker, so a hook
    that touches UI state must hand the work back to the UI thread itself.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = data_manager.DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.on_unauthorized = on_unauthorized

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, *, payload: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PersistenceError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 401:
            self.token = None
            if self.on_unauthorized is not None:
                self.on_unauthorized()
            raise AuthenticationRequired(f"{method} {url} rejected the session (401)")
        try:
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as exc:
            raise PersistenceError(f"{method} {url} returned {response.status_code}") from exc
        except ValueError as exc:
            raise PersistenceError(f"{method} {url} returned a non-JSON body") from exc

    def login(self, username: str, password: str) -> str:
        """Authenticate against ``POST /login`` and remember the issued token.

        Raises:
            PersistenceError: If the server is unreachable, rejects the
                credentials, or answers without a token.
        """

        body = self._request("POST", "/login", payload={"username": username, "password": password})
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise PersistenceError("Login response did not include a token")
        self.token = str(token)
        log.info("Authenticated as '%s'", username)
        return self.token

    def fetch(self) -> List[TransactionRecord]:
        body = self._request("GET", "/transactions")
        if body is None:
            return []
        if not isinstance(body, list):
            raise PersistenceError("Ledger server returned a non-list payload")
        try:
            return [data_manager.transaction_from_payload(item) for item in body]
        except ValueError as exc:
            raise PersistenceError(f"Ledger server returned an invalid record: {exc}") from exc

    def store(self, records: Sequence[TransactionRecord]) -> None:
        payload = [data_manager.transaction_to_payload(record) for record in records]
        self._request("POST", "/transactions", payload=payload)
        log.info("Saved %d transactions to '%s'", len(payload), self.base_url)

    def load(self) -> List[TransactionRecord]:
        try:
            records = self.fetch()
        except PersistenceError as exc:
            log.error("Error loading transactions: %s", exc)
            return []
        log.info("Loaded %d transactions from '%s'", len(records), self.base_url)
        return records

    def save(self, records: Sequence[TransactionRecord]) -> bool:
        try:
            self.store(records)
        except PersistenceError as exc:
            log.error("Error saving transactions: %s", exc)
            return False
        return True


class BackgroundSaver:
    """Fire-and-forget save queue in front of a gateway.

    A single worker thread runs saves in submission order. Each submission
    carries its own immutable snapshot of the ledger, so a slow save never
    observes later mutations. Failed saves are logged and dropped; there is
    no retry.
    """

    def __init__(self, gateway: PersistenceGateway, *, background: bool = True) -> None:
        self.gateway = gateway
        self.background = background
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger-save") if background else None
        )
        self._pending: List[Future] = []

    def _run(self, snapshot: tuple[TransactionRecord, ...]) -> bool:
        try:
            ok = self.gateway.save(snapshot)
        except Exception:  # logged, never raised to the submitter
            log.exception("Unexpected error while saving %d transactions", len(snapshot))
            return False
        if not ok:
            log.error("Save of %d transactions failed; in-memory ledger kept", len(snapshot))
        return ok

    def submit(self, records: Sequence[TransactionRecord]) -> Optional[Future]:
        """Schedule a save of ``records`` and return without waiting."""

        snapshot = tuple(records)
        if self._executor is None:
            self._run(snapshot)
            return None
        future = self._executor.submit(self._run, snapshot)
        self._pending = [item for item in self._pending if not item.done()]
        self._pending.append(future)
        return future

    def flush(self) -> None:
        """Block until every submitted save has finished."""

        for future in list(self._pending):
            future.result()
        self._pending.clear()

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def build_gateway(settings: data_manager.ConfigSettings, **kwargs: Any) -> PersistenceGateway:
    """Instantiate the backend selected by ``[Storage] Backend``."""

    if settings.backend == "http":
        return HttpGateway(
            settings.server_url,
            token=settings.token,
            timeout=settings.timeout,
            **kwargs,
        )
    return WorkbookGateway(settings.data_file)


__all__ = [
    "AuthenticationRequired",
    "BackgroundSaver",
    "HttpGateway",
    "PersistenceError",
    "PersistenceGateway",
    "WorkbookGateway",
    "build_gateway",
]
