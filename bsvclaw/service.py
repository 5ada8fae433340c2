"""
ClawService: the single process that owns every piece of local state.

The Job Store, the conversation files, the UTXO reservation table and the
poller thread all live here; the web surface and the CLI call into one
instance instead of touching files themselves.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from bsvclaw.bridge import BridgeCorrelator, ChatRecorder, CorrelatedResponse
from bsvclaw.config import ClawConfig
from bsvclaw.errors import ClawError, LedgerError, WalletError
from bsvclaw.ledger import LedgerGateway
from bsvclaw.llm_task import build_backend
from bsvclaw.logging_config import get_logger
from bsvclaw.poller import Poller
from bsvclaw.processor import JobProcessor
from bsvclaw.schema import ConversationEntry
from bsvclaw.settlement import UtxoReservations
from bsvclaw.signer import BsvSigner
from bsvclaw.store import ConversationStore, JobStore, build_context_prompt
from bsvclaw.wallet import AgentWallet

logger = get_logger(__name__)


class ClawService:
    def __init__(
        self,
        config: ClawConfig,
        wallet: AgentWallet,
        ledger,
        signer,
        inference,
        sender_wallet: Optional[AgentWallet] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.wallet = wallet
        self.ledger = ledger
        self.signer = signer
        self.inference = inference
        self.sender_wallet = sender_wallet

        self.job_store = JobStore(config.jobs_path)
        self.conversations = ConversationStore(config.conversations_dir, salt=config.conversation_salt)
        self.reservations = UtxoReservations(ttl=config.reservation_ttl, clock=clock)

        self.processor = JobProcessor(
            wallet=wallet,
            ledger=ledger,
            signer=signer,
            inference=inference,
            job_store=self.job_store,
            fee=config.settlement_fee,
            system_prompt=config.system_prompt,
            inference_timeout=config.inference_timeout,
            reservations=self.reservations,
        )
        self.poller = Poller(
            address=wallet.address,
            ledger=ledger,
            processor=self.processor,
            job_store=self.job_store,
            interval=config.poll_interval,
            settle_delay=config.settle_delay,
            reorg_margin=config.reorg_margin,
            sleep=sleep,
        )
        self.processor.on_settled = self.poller.mark_seen

        self.bridge: Optional[BridgeCorrelator] = None
        if sender_wallet is not None:
            self.bridge = BridgeCorrelator(
                sender_wallet=sender_wallet,
                agent_address=config.agent_address or wallet.address,
                ledger=ledger,
                signer=signer,
                job_store=self.job_store,
                sats_per_job=config.sats_per_job,
                fee=config.job_fee,
                buffer=config.funding_buffer,
                poll_timeout=config.poll_timeout,
                poll_retry=config.poll_retry,
                scan_depth=config.scan_depth,
                reservations=self.reservations,
                sleep=sleep,
                clock=clock,
            )
        self.chat_recorder = ChatRecorder(
            wallet=wallet,
            ledger=ledger,
            signer=signer,
            inference=inference,
            fee=config.settlement_fee,
            buffer=config.funding_buffer,
            system_prompt=config.system_prompt,
            inference_timeout=config.inference_timeout,
            reservations=self.reservations,
            job_store=self.job_store,
        )

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: ClawConfig) -> "ClawService":
        """Load (or create) the agent wallet, load the sender wallet if present, build real adapters."""
        wallet = AgentWallet.load_or_create(config.wallet_path, network=config.network)
        sender_wallet = None
        if config.sender_wallet_path is not None:
            try:
                sender_wallet = AgentWallet.load(config.sender_wallet_path)
            except WalletError as e:
                logger.warning(f"Bridge disabled: {e.message}")
        ledger = LedgerGateway(base_url=config.network_url, timeout=config.http_timeout)
        return cls(
            config=config,
            wallet=wallet,
            ledger=ledger,
            signer=BsvSigner(),
            inference=build_backend(config),
            sender_wallet=sender_wallet,
        )

    # --- agent loop ---

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Seed the poller and run it on a background thread."""
        if self.running:
            return
        self.poller.seed(include_history=self.config.skip_backlog)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.poller.run_forever, args=(self._stop,), name="claw-poller", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run(self) -> None:
        """Seed and poll on the calling thread until stop() (or Ctrl+C)."""
        self.poller.seed(include_history=self.config.skip_backlog)
        self._stop.clear()
        self.poller.run_forever(self._stop)

    # --- operator views ---

    def status(self) -> Dict[str, Any]:
        try:
            balance = self.ledger.get_balance(self.wallet.address)
            balance_view: Optional[Dict[str, int]] = {
                "confirmed": balance.confirmed,
                "unconfirmed": balance.unconfirmed,
                "total": balance.total,
            }
        except LedgerError as e:
            logger.warning(f"Balance lookup failed: {e}")
            balance_view = None
        return {
            "address": self.wallet.address,
            "network": self.config.network,
            "balance": balance_view,
            "jobs": self.job_store.summary().model_dump(),
            "polling": self.running,
            "bridge": self.bridge is not None,
            "chat_mode": self.config.chat_mode,
        }

    def jobs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [r.model_dump(by_alias=True) for r in self.job_store.recent(limit)]

    def history(self, requester: str) -> List[ConversationEntry]:
        return self.conversations.recent(requester, self.config.context_limit)

    # --- chat ---

    def chat(self, requester: str, prompt: str) -> CorrelatedResponse:
        """
        One exchange for one requester, with their recent history as context.

        Raises ConversationBusyError while a previous exchange is pending and
        ResponseTimeoutError when the bridge gives up. Any failure leaves the
        conversation as it was before the call.
        """
        limit = self.config.context_limit
        context = build_context_prompt(self.conversations.recent(requester, limit), prompt, limit)
        self.conversations.begin(requester, prompt)
        try:
            if self.config.chat_mode == "direct":
                response = self.chat_recorder.ask(prompt, context_prompt=context)
            else:
                if self.bridge is None:
                    raise WalletError("No sender wallet configured for the bridge")
                response = self.bridge.ask(context)
                if response.failed:
                    raise ClawError(
                        f"Job failed: {response.error}",
                        {"job_txid": response.job_txid},
                    )
            self.conversations.complete(
                requester,
                response.result,
                job_txid=response.job_txid,
                res_txid=response.response_txid,
            )
        except Exception:
            self.conversations.abandon(requester)
            raise
        return response
