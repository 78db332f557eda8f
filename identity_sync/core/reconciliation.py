"""Background activation of Pending accounts.

State machine driven by each processing attempt:

    PENDING --success--------------------------> ACTIVE
    PENDING --failure, attempts < max----------> PENDING (retried after backoff)
    PENDING --failure, attempts >= max---------> FAILED
    FAILED  --manual reset--------------------> PENDING (processed immediately)

An account is eligible on a scan when it has never been attempted or when
``now >= last_attempt_at + 2**attempts * backoff_base`` (1, 2, 4, 8, 16
minutes for attempts 0..4 with the default one-minute base).

Example::

    service = ReconciliationService(accounts, users, roles, issuer, sender)
    scheduler = ReconciliationScheduler(service, interval_seconds=60)
    scheduler.start()
    # ... application runs ...
    scheduler.stop()
"""
from __future__ import annotations
import datetime
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from scripts import audit

from .accounts import Account, AccountLocks, AccountRepository, AccountStatus
from .clock import SystemClock
from .exceptions import AccountNotFoundError, InvalidAccountStateError
from .keycloak import RoleService, UserService
from .notifications import ActivationTokenIssuer, NotificationSender

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
BACKOFF_BASE = datetime.timedelta(minutes=1)
DEFAULT_INTERVAL_SECONDS = 60
BASELINE_ROLE = "Interested"


def next_eligible_at(account: Account, base: datetime.timedelta = BACKOFF_BASE) -> Optional[datetime.datetime]:
    """Earliest time the account may be processed again; None when never attempted."""
    if account.last_attempt_at is None:
        return None
    return account.last_attempt_at + base * (2 ** account.attempts)


def is_eligible(account: Account, now: datetime.datetime, base: datetime.timedelta = BACKOFF_BASE) -> bool:
    eligible_at = next_eligible_at(account, base)
    return eligible_at is None or now >= eligible_at


def summarize_failure(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


@dataclass
class ScanResult:
    """Outcome counts for one scan."""
    pending: int = 0
    processed: int = 0
    activated: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: bool = False
    account_ids: List[str] = field(default_factory=list)


class ReconciliationService:
    """Drives Pending accounts through the activation step.

    Per attempt: bump ``attempts`` and stamp ``last_attempt_at`` and persist
    that first, then fetch the identity, assign the baseline role and send
    the activation notification (best effort).
    """

    def __init__(
        self,
        accounts: AccountRepository,
        users: UserService,
        roles: RoleService,
        issuer: ActivationTokenIssuer,
        sender: NotificationSender,
        *,
        clock=None,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: datetime.timedelta = BACKOFF_BASE,
        baseline_role: str = BASELINE_ROLE,
        max_workers: int = 1,
        realm: str = "demo",
        locks: Optional[AccountLocks] = None,
    ):
        self.accounts = accounts
        self.users = users
        self.roles = roles
        self.issuer = issuer
        self.sender = sender
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.baseline_role = baseline_role
        self.max_workers = max(1, max_workers)
        self.realm = realm
        self.locks = locks or AccountLocks()
        self._scan_lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────
    # Scan
    # ─────────────────────────────────────────────────────────────────────
    def scan(self) -> ScanResult:
        """Process every eligible Pending account once.

        Single-flight: when another scan is still running this returns
        immediately with ``skipped=True``.
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.warning("Previous reconciliation scan still running; skipping this tick")
            return ScanResult(skipped=True)
        try:
            return self._scan()
        finally:
            self._scan_lock.release()

    def _scan(self) -> ScanResult:
        result = ScanResult()
        pending = self.accounts.find_by_status(AccountStatus.PENDING)
        result.pending = len(pending)
        if not pending:
            logger.debug("No pending accounts to process")
            return result

        now = self.clock.now()
        eligible = []
        for account in pending:
            if is_eligible(account, now, self.backoff_base):
                eligible.append(account)
            else:
                logger.debug("Account %s still in backoff until %s", account.id, next_eligible_at(account, self.backoff_base))
                result.deferred += 1

        logger.info("Processing %d of %d pending accounts", len(eligible), len(pending))
        if self.max_workers == 1:
            outcomes = [self._process_leased(account) for account in eligible]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reconcile") as pool:
                outcomes = list(pool.map(self._process_leased, eligible))

        for outcome in outcomes:
            if outcome is None:
                continue
            result.processed += 1
            result.account_ids.append(outcome.id)
            if outcome.status == AccountStatus.ACTIVE:
                result.activated += 1
            elif outcome.status == AccountStatus.FAILED:
                result.failed += 1
        return result

    # ─────────────────────────────────────────────────────────────────────
    # Per-account processing
    # ─────────────────────────────────────────────────────────────────────
    def _process_leased(self, account: Account) -> Optional[Account]:
        if not self.locks.try_lease(account.id):
            logger.debug("Account %s already being processed", account.id)
            return None
        try:
            return self.process_account(account)
        except Exception:
            logger.exception("Unexpected error processing account %s; continuing scan", account.id)
            return None
        finally:
            self.locks.release(account.id)

    def _persist(self, account: Account) -> bool:
        """Save unless the row was deleted meanwhile (deprovisioned mid-attempt)."""
        with self.locks.writes:
            if self.accounts.find_by_id(account.id) is None:
                logger.warning("Account %s was deleted during processing; dropping its update", account.id)
                return False
            self.accounts.save(account)
            return True

    def process_account(self, account: Account) -> Optional[Account]:
        """Run one activation attempt and persist the resulting state.

        Never raises for activation failures; they end up as a state
        transition plus ``failure_reason``. Returns None when the account
        was deleted before or during the attempt.
        """
        account.attempts += 1
        account.last_attempt_at = self.clock.now()
        if not self._persist(account):
            return None
        logger.info("Processing account %s (attempt %d/%d)", account.id, account.attempts, self.max_attempts)

        try:
            self._activate(account.id)
        except Exception as exc:
            logger.error(
                "Activation of account %s failed (attempt %d/%d): %s",
                account.id, account.attempts, self.max_attempts, exc,
            )
            if account.attempts >= self.max_attempts:
                account.status = AccountStatus.FAILED
                account.failure_reason = summarize_failure(exc)
                if not self._persist(account):
                    return None
                logger.error(
                    "Account %s marked FAILED after %d attempts: %s",
                    account.id, account.attempts, account.failure_reason,
                )
                audit.safe_log_event(
                    "activation",
                    account.id,
                    operator="scheduler",
                    realm=self.realm,
                    details={"attempts": account.attempts, "reason": account.failure_reason},
                    success=False,
                )
                return account
            return account if self._persist(account) else None

        account.status = AccountStatus.ACTIVE
        account.failure_reason = None
        if not self._persist(account):
            return None
        logger.info("Account %s activated", account.id)
        audit.safe_log_event(
            "activation",
            account.id,
            operator="scheduler",
            realm=self.realm,
            details={"attempts": account.attempts},
        )
        return account

    def _activate(self, user_id: str) -> None:
        user = self.users.get_user(user_id)
        username = user.get("username")
        email = user.get("email")
        if not email:
            raise ValueError(f"User {user_id} has no email configured in Keycloak")

        self.roles.replace_role(user_id, self.baseline_role)

        try:
            token = self.issuer.issue(user_id, email)
            self.sender.send_activation(email, username, token)
        except Exception as exc:
            logger.warning("Could not send activation email to %s: %s; activating anyway", email, exc)

    # ─────────────────────────────────────────────────────────────────────
    # Operator actions
    # ─────────────────────────────────────────────────────────────────────
    def reset_failed(self, account_id: str, operator: str = "system") -> Account:
        """Move a Failed account back to Pending and process it right away.

        Raises:
            AccountNotFoundError: If no local row exists
            InvalidAccountStateError: If the account is not Failed
        """
        if not self.locks.try_lease(account_id):
            raise InvalidAccountStateError(account_id, "being processed", AccountStatus.FAILED.value)
        try:
            account = self.accounts.find_by_id(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            if account.status != AccountStatus.FAILED:
                raise InvalidAccountStateError(account_id, account.status.value, AccountStatus.FAILED.value)

            logger.info("Manual retry requested for account %s", account_id)
            account.status = AccountStatus.PENDING
            account.attempts = 0
            account.last_attempt_at = None
            account.failure_reason = None
            if not self._persist(account):
                raise AccountNotFoundError(account_id)
            audit.safe_log_event("activation_reset", account_id, operator=operator, realm=self.realm)

            result = self.process_account(account)
            if result is None:
                raise AccountNotFoundError(account_id)
            return result
        finally:
            self.locks.release(account_id)

    def list_accounts(self, status: AccountStatus) -> List[Account]:
        return self.accounts.find_by_status(status)


class ReconciliationScheduler:
    """Runs ``ReconciliationService.scan`` on a fixed period in a daemon thread."""

    def __init__(self, service: ReconciliationService, interval_seconds: float = DEFAULT_INTERVAL_SECONDS):
        self.service = service
        self.interval_seconds = interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background loop.

        Raises:
            RuntimeError: If the scheduler is already running
        """
        if self.running:
            raise RuntimeError("ReconciliationScheduler already started")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="reconciliation-scheduler", daemon=True)
        self._thread.start()
        logger.info("Reconciliation scheduler started (interval=%.1fs)", self.interval_seconds)

    def run_once(self) -> ScanResult:
        """Run one scan, logging rather than raising on unexpected errors."""
        try:
            return self.service.scan()
        except Exception:
            logger.exception("Error in reconciliation scan")
            return ScanResult()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(timeout=self.interval_seconds)

    def join(self, timeout: Optional[float] = None) -> None:
        """Block until the loop exits or the timeout elapses."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)

    def stop(self, timeout: float = 10.0) -> None:
        """Signal the loop to exit and wait for the current scan to finish."""
        if self._thread is None:
            logger.warning("ReconciliationScheduler not started, nothing to stop")
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Reconciliation thread did not stop within %.1fs", timeout)
        self._thread = None
        logger.info("Reconciliation scheduler stopped")
