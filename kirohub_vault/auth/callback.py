"""
CallbackCoordinator — single-slot rendezvous between a login attempt and
the ``kiro://`` deep-link redirect that completes it.

Lifecycle of one attempt::

    register(state) ──► pending ──► handle_deep_link(url) ──► fulfilled
                           │                                  (code or error)
                           ├──► register(other) ──► superseded
                           └──► deadline passes  ──► expired (slot freed)

``register`` and ``handle_deep_link`` may be called from any thread. The
waiter can be awaited from asyncio or waited on from a plain thread.

Security Note:
    The authorization code is never logged; only its length is.
"""
import asyncio
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Optional

from yarl import URL

from .state import STATE_VALIDITY_SECONDS, generate_secure_state, validate_state_signature
from ..exceptions import (
    CallbackError,
    CallbackSupersededError,
    CallbackTimeoutError,
    InvalidCallbackUrlError,
    InvalidStateError,
    MissingParameterError,
    ProviderError,
    StateMismatchError,
    StateValidationError,
)
from ..vault.config import DEFAULT_REDIRECT_URI

logger = logging.getLogger("kirohub.auth")

CALLBACK_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class OAuthCallbackResult:
    code: str = field(repr=False)
    state: str = field(repr=False)


@dataclass
class PendingCallback:
    expected_state: str = field(repr=False)
    future: Future = field(default_factory=Future, repr=False)


class CallbackWaiter:
    """Single-use handle returned by ``CallbackCoordinator.register``."""

    def __init__(
        self,
        coordinator: "CallbackCoordinator",
        pending: PendingCallback,
        timeout: float,
    ):
        self._coordinator = coordinator
        self._pending = pending
        self.timeout = timeout
        self._consumed = False
        self._consume_lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._pending.expected_state

    def _consume(self) -> None:
        with self._consume_lock:
            if self._consumed:
                raise RuntimeError("Callback channel already consumed")
            self._consumed = True

    def _on_timeout(self) -> OAuthCallbackResult:
        if self._coordinator._expire(self._pending):
            logger.warning("OAuth callback timed out after %ss", self.timeout)
            raise CallbackTimeoutError(
                f"OAuth callback timeout ({self.timeout:g} seconds)"
            )
        # fulfilled concurrently with the deadline; the outcome is already set
        return self._pending.future.result()

    def cancel(self) -> bool:
        """Abandon this attempt and free the slot if it still holds it."""
        return self._coordinator._expire(self._pending)

    async def wait_for_callback(self) -> OAuthCallbackResult:
        """Suspend until the callback arrives or the deadline passes.

        Raises:
            CallbackError: Timeout, provider error, missing parameter,
                state mismatch or tampering, or superseded by a new login.
            RuntimeError: If this waiter was already consumed.
        """
        self._consume()
        future = asyncio.wrap_future(self._pending.future)
        try:
            return await asyncio.wait_for(asyncio.shield(future), self.timeout)
        except asyncio.TimeoutError:
            return self._on_timeout()
        except asyncio.CancelledError:
            self.cancel()
            raise

    def wait_for_callback_blocking(self) -> OAuthCallbackResult:
        """Thread-blocking variant of ``wait_for_callback``."""
        self._consume()
        try:
            return self._pending.future.result(timeout=self.timeout)
        except FutureTimeoutError:
            return self._on_timeout()


class CallbackCoordinator:
    """Owns the single pending-callback slot for the process.

    A new registration immediately fails any previous waiter with
    ``CallbackSupersededError``.
    """

    def __init__(
        self,
        machine_id: Optional[str] = None,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        timeout: float = CALLBACK_TIMEOUT_SECONDS,
        state_validity: int = STATE_VALIDITY_SECONDS,
    ):
        self._machine_id = machine_id
        self.redirect_uri = redirect_uri
        self.scheme = URL(redirect_uri).scheme
        self.timeout = timeout
        self.state_validity = state_validity
        self._lock = threading.Lock()
        self._pending: Optional[PendingCallback] = None

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, state: str) -> CallbackWaiter:
        """Store ``state`` as the expected value and return its waiter."""
        pending = PendingCallback(expected_state=state)
        with self._lock:
            previous, self._pending = self._pending, pending
            if previous is not None and not previous.future.done():
                logger.info("Pending OAuth callback superseded by a new login")
                previous.future.set_exception(
                    CallbackSupersededError("Login superseded by a newer attempt")
                )
        return CallbackWaiter(self, pending, self.timeout)

    def register_secure(self) -> tuple[str, CallbackWaiter]:
        """Mint a signed state token and register it in one step."""
        state = generate_secure_state(self._machine_id)
        return state, self.register(state)

    def _expire(self, pending: PendingCallback) -> bool:
        """Free the slot if ``pending`` still owns it."""
        with self._lock:
            if self._pending is not pending:
                return False
            self._pending = None
            pending.future.cancel()
            return True

    # ------------------------------------------------------------------
    # Callback handling
    # ------------------------------------------------------------------

    def handle_deep_link(self, url: str) -> bool:
        """Deliver a deep-link URL to the pending waiter.

        Returns:
            True if the URL was consumed as this login's callback; False if
            there is no waiter, the scheme is foreign (slot kept) or the URL
            is unparseable (waiter failed).
        """
        with self._lock:
            pending = self._pending
            if pending is None:
                logger.debug("Deep link ignored: no pending waiter")
                return False

            try:
                parsed = URL(url)
            except (ValueError, TypeError) as err:
                self._pending = None
                logger.warning("Deep link URL parse error: %s", err)
                pending.future.set_exception(
                    InvalidCallbackUrlError(f"Invalid URL: {err}")
                )
                return False

            if parsed.scheme != self.scheme:
                logger.debug("Deep link ignored: scheme %r", parsed.scheme)
                return False

            self._pending = None
            try:
                result = self._evaluate(parsed, pending.expected_state)
            except CallbackError as err:
                logger.warning("OAuth callback rejected: %s", err)
                pending.future.set_exception(err)
            else:
                logger.info(
                    "OAuth callback accepted (code length %d)", len(result.code),
                )
                pending.future.set_result(result)
            return True

    def _evaluate(self, parsed: URL, expected_state: str) -> OAuthCallbackResult:
        params = parsed.query
        error = params.get("error")
        if error is not None:
            raise ProviderError(error, params.get("error_description"))

        code = params.get("code")
        if not code:
            raise MissingParameterError("code")
        state = params.get("state")
        if not state:
            raise MissingParameterError("state")

        if state != expected_state:
            raise StateMismatchError("State mismatch - possible CSRF attack")

        try:
            validate_state_signature(
                state, self._machine_id, max_age=self.state_validity,
            )
        except StateValidationError as err:
            raise InvalidStateError(f"State validation failed: {err}") from err

        return OAuthCallbackResult(code=code, state=state)
