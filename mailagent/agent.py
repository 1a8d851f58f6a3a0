"""MailAgent: owns the mailbox pollers and processes their merged stream."""

from __future__ import annotations

import asyncio
import signal
import time
from collections.abc import Callable

import structlog
import uvicorn

from .auth import MsalTokenProvider
from .config import AgentConfig, AuthenticationType, MailboxConfig
from .decryption import GnupgDecryptor
from .errors import AgentStartupError
from .extraction import OperationEvaluator
from .health import create_health_app
from .heartbeat import HeartbeatSender
from .imap_client import ImapSession
from .interface import Decryptor, MailProcessor, MailSession, TokenProvider
from .logging import setup_logging
from .models import AgentStatus, FetchedEmail, PollerState, Site
from .poller import MailboxPoller
from .processors import create_processor
from .publisher import OperationApiClient
from .stream import MailItem, MailStream, StreamError

logger = structlog.get_logger()

SessionFactory = Callable[[MailboxConfig], MailSession]


class MailAgent:
    """Supervises one poller per configured mailbox.

    Collaborators default to the production implementations built from
    *config*; tests pass their own. ``run()`` starts, concurrently via
    :class:`asyncio.TaskGroup`:

    * the stream consumer, which hands each message to the processor
    * the FastAPI health server (unless ``health_port`` is 0)
    * the heartbeat sender

    Call ``asyncio.run(agent.run())`` to start the agent.
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        session_factory: SessionFactory | None = None,
        processor: MailProcessor | None = None,
        publisher: OperationApiClient | None = None,
        decryptor: Decryptor | None = None,
        token_provider: TokenProvider | None = None,
        heartbeat: HeartbeatSender | None = None,
    ) -> None:
        self.config = config
        self.start_time: float = time.monotonic()
        self.stream = MailStream()
        self.messages_processed: int = 0
        self.messages_failed: int = 0
        self.mailbox_errors: int = 0

        self._status = AgentStatus.STARTING
        self._shutdown_event = asyncio.Event()
        self._session_factory = session_factory or self._default_session
        self._publisher = publisher or OperationApiClient(config.publish)
        self._heartbeat = heartbeat or HeartbeatSender(config.heartbeat, config.retry)
        self._token_provider = token_provider
        if self._token_provider is None and any(
            m.authentication_type is AuthenticationType.OAUTH for m in config.mailboxes
        ):
            self._token_provider = MsalTokenProvider(config.oauth)

        if processor is None:
            if decryptor is None and config.process_mode.needs_decryption:
                decryptor = GnupgDecryptor(
                    config.secret_key_passphrase, gnupg_home=config.gnupg_home
                )
            processor = create_processor(
                config.process_mode,
                evaluator=OperationEvaluator(config.patterns),
                publisher=self._publisher,
                decryptor=decryptor,
                output_path=config.output_path,
            )
        self._processor = processor

        self.pollers: list[MailboxPoller] = [
            MailboxPoller(
                mailbox,
                self._session_factory(mailbox),
                self.stream,
                poll_interval_seconds=config.poll_interval_seconds,
                reconnect_interval_seconds=config.reconnect_interval_seconds,
                token_provider=self._token_provider,
            )
            for mailbox in config.mailboxes
        ]
        self._active: list[MailboxPoller] = []

    def _default_session(self, mailbox: MailboxConfig) -> MailSession:
        return ImapSession(
            ignore_certificate_errors=self.config.ignore_certificate_errors,
            timeout=self.config.imap_timeout_seconds,
        )

    @property
    def status(self) -> AgentStatus:
        if self._status is AgentStatus.RUNNING and any(
            p.state is PollerState.FAILED for p in self._active
        ):
            return AgentStatus.DEGRADED
        return self._status

    # ------------------------------------------------------------------
    # Pollers
    # ------------------------------------------------------------------

    async def start_pollers(self) -> list[MailboxPoller]:
        """Start every poller; mailboxes that fail to connect are skipped.

        Raises :class:`AgentStartupError` when no mailbox could be started.
        """
        for poller in self.pollers:
            try:
                await poller.start(self._shutdown_event)
            except Exception as exc:
                logger.critical(
                    "mailbox_start_failed",
                    mailbox=poller.mailbox.name,
                    host=poller.mailbox.host,
                    error=str(exc),
                    exc_info=True,
                )
                continue
            self._active.append(poller)

        if not self._active:
            raise AgentStartupError("no mailbox could be connected")
        logger.info(
            "mailboxes_started",
            started=len(self._active),
            configured=len(self.pollers),
        )
        return list(self._active)

    async def stop_pollers(self) -> None:
        active, self._active = self._active, []
        if active:
            await asyncio.gather(*(poller.stop() for poller in active))

    # ------------------------------------------------------------------
    # Stream consumer
    # ------------------------------------------------------------------

    async def _consume_loop(self) -> None:
        logger.info("consume_loop_started", process_mode=self.config.process_mode.value)
        async for event in self.stream:
            match event:
                case MailItem(message=message, site=site):
                    await self._handle(message, site)
                case StreamError(mailbox=mailbox, error=error):
                    self.mailbox_errors += 1
                    logger.error("mailbox_failed", mailbox=mailbox, error=str(error))
        logger.info("consume_loop_stopped")

    async def _handle(self, message: FetchedEmail, site: Site) -> None:
        started = time.perf_counter()
        logger.info("mail_processing", site=site.name, uid=message.uid, subject=message.subject)
        try:
            await self._processor.process(message, site)
        except Exception:
            self.messages_failed += 1
            logger.exception(
                "mail_processing_failed",
                site=site.name,
                uid=message.uid,
                subject=message.subject,
            )
            return
        self.messages_processed += 1
        logger.info(
            "mail_processed",
            site=site.name,
            uid=message.uid,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

    async def _stop_on_shutdown(self) -> None:
        await self._shutdown_event.wait()
        self._status = AgentStatus.STOPPING
        await self.stop_pollers()
        self.stream.complete()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health_check(self) -> dict[str, object]:
        return {
            "mailboxes": {p.mailbox.name: p.health() for p in self.pollers},
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
            "mailbox_errors": self.mailbox_errors,
            "heartbeats_sent": self._heartbeat.beats_sent,
        }

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _handle(sig: signal.Signals) -> None:
            logger.info("shutdown_signal_received", signal=sig.name)
            self._shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _handle, sig)

    async def run(self, *, install_signal_handlers: bool = True) -> None:
        """Start the pollers and all subsystems; return after shutdown.

        Raises :class:`AgentStartupError` if no mailbox could be connected.
        """
        setup_logging(json=self.config.log_json, level=self.config.log_level)
        if install_signal_handlers:
            self._install_signal_handlers()
        self.start_time = time.monotonic()
        logger.info(
            "agent_starting",
            mailboxes=len(self.pollers),
            process_mode=self.config.process_mode.value,
        )

        try:
            await self.start_pollers()
        except AgentStartupError:
            self._status = AgentStatus.STOPPED
            raise

        await self._publisher.start()
        self._status = AgentStatus.RUNNING
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._consume_loop())
                tg.create_task(self._stop_on_shutdown())
                tg.create_task(self._heartbeat.run(self._shutdown_event))
                if self.config.health_port:
                    tg.create_task(self._run_health_server())
        except* Exception:
            logger.exception("agent_task_group_error")
        finally:
            self._status = AgentStatus.STOPPING
            await self.stop_pollers()
            self.stream.complete()
            await self._publisher.stop()
            self._status = AgentStatus.STOPPED
            logger.info(
                "agent_stopped",
                messages_processed=self.messages_processed,
                messages_failed=self.messages_failed,
            )
