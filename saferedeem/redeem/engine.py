"""Sequential redemption engine.

For each candidate: encode redeemPositions, wrap it in a Safe transaction,
hash, sign, submit, classify. Candidates run strictly one after another with
a fixed cooldown between them, because the Safe nonce must increase
monotonically and both RPC endpoints and the relayer are rate limited.
"""

import logging
import time
from collections.abc import Callable, Iterable
from typing import TypeVar

from web3 import Web3

from saferedeem.chain.contracts import CTF_ADDRESS, USDC_ADDRESS
from saferedeem.chain.retry import with_retry
from saferedeem.chain.rpc_pool import RpcEndpointPool
from saferedeem.chain.safe_gateway import SafeGateway
from saferedeem.redeem.classify import FATAL_ERRORS, classify_error, classify_submission, truncate
from saferedeem.redeem.errors import (
    InconsistentBalance,
    SubmissionOutcomeUnknown,
    TransientNetworkError,
)
from saferedeem.redeem.models import (
    BalanceSnapshot,
    CandidateResult,
    Outcome,
    RedemptionCandidate,
    RunReport,
    SafeTransaction,
)
from saferedeem.redeem.safe_hash import SafeTxHasher
from saferedeem.redeem.signer import SafeSigner
from saferedeem.redeem.submission import SubmissionStrategy
from saferedeem.redeem.tx_builder import build_redeem_transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedemptionEngine:
    """Runs the build, hash, sign, submit pipeline over a batch of candidates."""

    def __init__(
        self,
        pool: RpcEndpointPool,
        signer: SafeSigner,
        strategy: SubmissionStrategy,
        hasher: SafeTxHasher,
        safe_address: str,
        collateral_token: str = USDC_ADDRESS,
        ctf_address: str = CTF_ADDRESS,
        cooldown: float = 2.0,
        max_candidates: int | None = None,
        candidate_attempts: int = 3,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
        gateway_factory: Callable[[Web3], SafeGateway] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the engine.

        Args:
            pool: RPC endpoint pool used for every (re)connection
            signer: Safe owner key
            strategy: Direct, relayer or dry-run submission
            hasher: Local or on-chain Safe transaction hasher
            safe_address: Safe proxy holding the positions
            collateral_token: Token whose balance is verified around the batch
            ctf_address: Conditional Tokens contract
            cooldown: Seconds between candidates
            max_candidates: Cap on candidates per run (None for no cap)
            candidate_attempts: Attempts per candidate on transient failures
            retry_attempts: Attempts per read-only chain call
            retry_delay: Seconds between read attempts
            gateway_factory: Builds a SafeGateway from a connection
            sleep: Sleep function (injectable for tests)
        """
        if candidate_attempts < 1:
            raise ValueError("candidate_attempts must be at least 1")

        self.pool = pool
        self.signer = signer
        self.strategy = strategy
        self.hasher = hasher
        self.safe_address = Web3.to_checksum_address(safe_address)
        self.collateral_token = Web3.to_checksum_address(collateral_token)
        self.ctf_address = Web3.to_checksum_address(ctf_address)
        self.cooldown = cooldown
        self.max_candidates = max_candidates
        self.candidate_attempts = candidate_attempts
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._gateway_factory = gateway_factory or (
            lambda w3: SafeGateway(w3, self.safe_address, self.ctf_address)
        )
        self._sleep = sleep

        self._gateway: SafeGateway | None = None
        self.endpoint: str | None = None
        self._last_nonce: int | None = None
        self._in_flight: SafeTransaction | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Connection and reads
    # ─────────────────────────────────────────────────────────────────────────

    def _connect(self) -> SafeGateway:
        w3, endpoint = self.pool.acquire()
        self._gateway = self._gateway_factory(w3)
        self.endpoint = endpoint
        logger.info(f"RPC: {endpoint}")
        return self._gateway

    @property
    def gateway(self) -> SafeGateway:
        if self._gateway is None:
            return self._connect()
        return self._gateway

    def _read(self, operation: Callable[[SafeGateway], T], description: str) -> T:
        return with_retry(
            lambda: operation(self.gateway),
            self.retry_attempts,
            self.retry_delay,
            retry_on=(TransientNetworkError,),
            description=description,
            sleep=self._sleep,
        )

    def read_balance(self) -> int:
        """Collateral balance of the Safe in raw units."""
        return self._read(
            lambda gw: gw.balance_of(self.collateral_token, self.safe_address), "balance read"
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Batch
    # ─────────────────────────────────────────────────────────────────────────

    def _select(self, candidates: Iterable[RedemptionCandidate]) -> list[RedemptionCandidate]:
        seen: set[str] = set()
        selected = []
        for candidate in candidates:
            if candidate.condition_id in seen:
                continue
            seen.add(candidate.condition_id)
            selected.append(candidate)
        if self.max_candidates is not None and len(selected) > self.max_candidates:
            logger.info(f"Limiting run to {self.max_candidates} of {len(selected)} candidates")
            selected = selected[: self.max_candidates]
        return selected

    def run(self, candidates: Iterable[RedemptionCandidate]) -> RunReport:
        """Redeem every candidate in order and verify the balance delta.

        Raises:
            EndpointUnavailable: no RPC endpoint answered
            AuthFailure: the relayer rejected our credentials
        """
        selected = self._select(candidates)
        report = RunReport(strategy=self.strategy.name)

        self._connect()
        report.endpoint = self.endpoint

        snapshot = BalanceSnapshot(before=self.read_balance())
        report.balance = snapshot
        logger.info(f"Balance: {snapshot.to_units(snapshot.before)}")

        if not selected:
            logger.info("Nothing to redeem")
            snapshot.after = snapshot.before
            return report

        logger.info(f"{len(selected)} candidate(s), submitting via {self.strategy.name}")
        self._read(self.strategy.prepare, "strategy setup")

        for index, candidate in enumerate(selected):
            if index:
                self._sleep(self.cooldown)
            result = self.process(candidate)
            report.results.append(result)
            logger.info(f"  {candidate.short_id} {result.outcome.value} {result.detail}".rstrip())

        if self.strategy.settle_delay and report.counts()[Outcome.SUCCESS]:
            logger.info(f"Waiting {self.strategy.settle_delay}s for submissions to settle")
            self._sleep(self.strategy.settle_delay)

        # Fresh endpoint for the closing balance read
        self._connect()
        snapshot.after = self.read_balance()
        try:
            snapshot.verify()
        except InconsistentBalance as e:
            report.balance_consistent = False
            logger.error(f"Balance check failed: {e}")

        logger.info(f"After: {snapshot.to_units(snapshot.after)} | {report.summary()}")
        return report

    # ─────────────────────────────────────────────────────────────────────────
    # Single candidate
    # ─────────────────────────────────────────────────────────────────────────

    def process(self, candidate: RedemptionCandidate) -> CandidateResult:
        """Run the full pipeline for one candidate and classify the outcome.

        A submission whose outcome is still unknown after the last attempt is
        checked once more; if it did not land, the strategy drops any nonce
        it tracks so the next candidate starts from a fresh read.
        """
        logger.info(f"Processing {candidate.short_id}")
        pending: SafeTransaction | None = None
        detail = ""

        for attempt in range(1, self.candidate_attempts + 1):
            try:
                if attempt > 1:
                    self._connect()
                if pending is not None:
                    landed = self._check_landed(candidate, pending, attempt)
                    if landed is not None:
                        return landed
                    pending = None
                result = self._attempt(candidate)
                result.attempts = attempt
                return result
            except FATAL_ERRORS:
                raise
            except SubmissionOutcomeUnknown as e:
                pending = self._in_flight
                detail = str(e)
                logger.warning(f"  {candidate.short_id} {truncate(detail)}")
            except Exception as e:
                outcome = classify_error(e)
                detail = str(e) or type(e).__name__
                if outcome is not Outcome.RETRYABLE:
                    return CandidateResult(
                        candidate, outcome, detail=truncate(detail), attempts=attempt
                    )
                logger.warning(f"  {candidate.short_id} transient: {truncate(detail)}")
            finally:
                self._in_flight = None

        if pending is not None:
            try:
                self._connect()
                landed = self._check_landed(candidate, pending, self.candidate_attempts)
                if landed is not None:
                    return landed
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.warning(f"  {candidate.short_id} landed check failed: {truncate(str(e))}")
            self.strategy.forget(pending)

        return CandidateResult(
            candidate,
            Outcome.RETRYABLE,
            nonce=pending.nonce if pending else None,
            detail=truncate(detail),
            attempts=self.candidate_attempts,
        )

    def _check_landed(
        self, candidate: RedemptionCandidate, pending: SafeTransaction, attempt: int
    ) -> CandidateResult | None:
        if not self._read(lambda gw: self.strategy.landed(pending, gw), "landed check"):
            return None
        self._consume(pending)
        return CandidateResult(
            candidate,
            Outcome.SUCCESS,
            nonce=pending.nonce,
            detail="landed after unknown submission outcome",
            attempts=attempt,
        )

    def _attempt(self, candidate: RedemptionCandidate) -> CandidateResult:
        denominator = self._read(
            lambda gw: gw.payout_denominator(candidate.condition_bytes), "payout denominator"
        )
        if denominator == 0:
            return CandidateResult(candidate, Outcome.SKIPPED, detail="condition not resolved")

        nonce = self._read(self.strategy.next_nonce, "nonce read")
        if self._last_nonce is not None and nonce <= self._last_nonce:
            raise TransientNetworkError(f"Stale nonce {nonce}, last used {self._last_nonce}")

        safe_tx = build_redeem_transaction(candidate, nonce, self.ctf_address)
        tx_hash = self._read(lambda gw: self.hasher.compute(safe_tx, gw), "safe tx hash")
        signature = self.signer.sign(tx_hash)

        self._in_flight = safe_tx
        try:
            submission = self.strategy.submit(safe_tx, signature, self.gateway)
        except TransientNetworkError as e:
            raise SubmissionOutcomeUnknown(nonce, e) from e

        outcome = classify_submission(submission)
        if outcome is Outcome.SUCCESS:
            self._consume(safe_tx)
            detail = f"{submission.tx_id or ''} {submission.status}".strip()
        else:
            detail = truncate(submission.reason or "rejected")

        return CandidateResult(
            candidate, outcome, nonce=nonce, submission=submission, detail=detail
        )

    def _consume(self, safe_tx: SafeTransaction) -> None:
        if not self.strategy.consumes_nonce:
            return
        self._last_nonce = safe_tx.nonce
        self.strategy.accepted(safe_tx)

    def close(self) -> None:
        self.strategy.close()

    def __enter__(self) -> "RedemptionEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
