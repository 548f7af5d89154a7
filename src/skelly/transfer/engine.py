"""Chunked file upload state machine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..config import TransferConfig
from ..exceptions import (
    BLEConnectionError,
    BLETimeoutError,
    InvalidResponseError,
    MalformedFrameError,
    ProtocolError,
    TransferCancelledError,
    TransferDisconnectedError,
    TransferError,
    TransferMalformedError,
    TransferRejectedError,
    TransferTimeoutError,
)
from ..models.enums import TransferPhase
from ..protocol.commands import (
    build_commit_command,
    build_data_chunk_command,
    build_end_transfer_command,
    build_start_transfer_command,
)
from ..protocol.correlation import ResponseWaiters
from ..protocol.responses import (
    ChunkDropNotice,
    CommitAck,
    EndAck,
    Notification,
    NotificationKind,
    ResumeWrittenReport,
    StartAck,
    decode_as,
    notification_kind,
)
from ..transport.base import FrameTransport
from .pacing import PacingController
from .session import TransferResult, TransferSession

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

MAX_CHUNK_COUNT = 0xFFFF


class TransferEngine:
    """Uploads one file at a time over the chunked C0/C1/C2/C3 protocol.

    Phases: STARTING -> STREAMING (<-> RETRANSMITTING) -> ENDING
    (-> RECOVERING) -> COMMITTING -> COMPLETE.

    The engine never reads notifications itself. The owner must feed every
    decoded notification to handle_notification() before dispatching the raw
    frame to the shared ResponseWaiters.
    """

    def __init__(
            self,
            transport: FrameTransport,
            waiters: ResponseWaiters,
            config: TransferConfig | None = None,
    ):
        self._transport = transport
        self._waiters = waiters
        self.config = config or TransferConfig()
        self._session: TransferSession | None = None
        self._pacing = PacingController(self.config)
        self._running = False

    @property
    def is_active(self) -> bool:
        """True while an upload is in progress."""
        return self._running

    @property
    def session(self) -> TransferSession | None:
        """Most recent session (in progress or finished)."""
        return self._session

    @property
    def pacing(self) -> PacingController:
        return self._pacing

    def cancel(self) -> bool:
        """Request cancellation of the running upload.

        Returns:
            True if an upload was running
        """
        if not self._running or self._session is None:
            return False
        _LOGGER.warning("Cancelling upload of %s", self._session.filename)
        self._session.cancelled = True
        return True

    def handle_notification(self, notification: Notification) -> None:
        """Update the running session from a decoded notification.

        Only sets flags or queues indices; never blocks. The stream redirect
        comes from BBC5 bytes-written reports. BBC1 drop notices only queue
        retransmits, since the device names the dropped chunk rather than a
        new stream position.
        """
        session = self._session
        if not self._running or session is None:
            return

        if isinstance(notification, ChunkDropNotice):
            if notification.dropped and session.queue_retransmit(notification.index):
                _LOGGER.warning("Device dropped chunk %d, queued for retransmit", notification.index)
        elif isinstance(notification, ResumeWrittenReport):
            session.request_resume(notification.bytes_written)
            _LOGGER.info(
                "Device reports %d bytes written, resume at chunk %d",
                notification.bytes_written,
                session.resume_redirect,
            )
        elif isinstance(notification, EndAck):
            if notification.failed and session.phase in (TransferPhase.STREAMING, TransferPhase.RETRANSMITTING):
                _LOGGER.warning("Device signalled end failure mid-stream")
                session.end_failed_mid_stream = True

    async def upload(
            self,
            data: bytes,
            filename: str,
            progress_callback: ProgressCallback | None = None,
    ) -> TransferResult:
        """Upload a file and commit it under filename.

        Args:
            data: File contents
            filename: Name stored on the device
            progress_callback: Called with (chunks done, chunk count) after each fresh chunk

        Returns:
            TransferResult with counters and timing

        Raises:
            BLEConnectionError: If the transport is not connected
            RuntimeError: If an upload is already running on this engine
            ValueError: If data or filename is empty, or the file needs too many chunks
            TransferError: Subclass describing why the transfer failed
        """
        if not self._transport.is_connected:
            raise BLEConnectionError("Not connected")
        if self._running:
            raise RuntimeError("Transfer already in progress")

        filename = (filename or "").strip()
        if not filename:
            raise ValueError("Filename must not be empty")
        if not data:
            raise ValueError("Cannot upload an empty file")

        if self._session is not None:
            self._session.discard()
        session = TransferSession(data=bytes(data), filename=filename, chunk_size=self.config.chunk_size)
        if session.chunk_count > MAX_CHUNK_COUNT:
            raise ValueError(
                f"File needs {session.chunk_count} chunks (max {MAX_CHUNK_COUNT}), increase chunk_size"
            )

        self._session = session
        self._pacing = PacingController(self.config)
        self._running = True

        _LOGGER.info(
            "Uploading %s: %d bytes in %d chunks of %d",
            filename,
            session.total_length,
            session.chunk_count,
            session.chunk_size,
        )

        try:
            try:
                await self._start(session)
                await self._stream(session, progress_callback)
                await self._end(session)
                await self._commit(session)
                session.set_phase(TransferPhase.COMPLETE)
            except BLETimeoutError as e:
                raise TransferTimeoutError(str(e), session.phase) from e
            except BLEConnectionError as e:
                raise TransferDisconnectedError(f"Connection lost: {e}", session.phase) from e
            except (InvalidResponseError, MalformedFrameError) as e:
                raise TransferMalformedError(str(e), session.phase) from e
            except ProtocolError as e:
                raise TransferRejectedError(str(e), session.phase) from e
        except TransferError as e:
            _LOGGER.error("Upload of %s failed: %s", filename, e)
            raise
        finally:
            self._running = False
            if session.phase != TransferPhase.COMPLETE:
                session.discard()

        result = session.to_result()
        _LOGGER.info(
            "Upload of %s complete: %d bytes in %.2fs (%.1f KB/s), %d retransmits",
            filename,
            result.bytes_total,
            result.elapsed,
            result.throughput,
            result.retransmits,
        )
        return result

    def _checkpoint(self, session: TransferSession, chunk_index: int | None = None) -> None:
        if session.cancelled:
            raise TransferCancelledError("Transfer cancelled", session.phase, chunk_index)
        if not self._transport.is_connected:
            raise TransferDisconnectedError("Disconnected during transfer", session.phase, chunk_index)

    def _chunk_unacknowledged(self, index: int) -> bool:
        if index == 0 and self.config.first_chunk_acknowledged:
            return False
        return self.config.chunks_unacknowledged

    async def _send_and_wait(
            self,
            kind: NotificationKind,
            frame: bytes,
            timeout: float,
    ) -> bytes:
        """Send a frame and wait for the matching acknowledgement."""
        future = self._waiters.register(kind.prefix, timeout)
        try:
            await self._transport.send(frame)
        except BaseException:
            future.cancel()
            raise
        return await future

    async def _wait_optional(self, kind: NotificationKind, timeout: float) -> bytes | None:
        try:
            return await self._waiters.wait_for(kind.prefix, timeout)
        except BLETimeoutError:
            return None

    async def _send_and_race(
            self,
            frame: bytes | None,
            timeout: float,
            prefer_unacknowledged: bool = False,
    ) -> bytes | None:
        """Optionally send a frame, then wait for an end ack or a drop notice.

        Returns:
            The first matching frame (end ack wins a tie), or None on timeout

        Raises:
            BLEConnectionError: If the link drops while waiting
        """
        end_future = self._waiters.register(NotificationKind.END_ACK.prefix, timeout)
        drop_future = self._waiters.register(NotificationKind.CHUNK_DROP.prefix, timeout)
        futures = (end_future, drop_future)
        try:
            if frame is not None:
                await self._transport.send(frame, prefer_unacknowledged=prefer_unacknowledged)
            await asyncio.wait(futures, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for future in futures:
                if not future.done():
                    future.cancel()

        result = None
        error = None
        for future in futures:
            if future.cancelled():
                continue
            exc = future.exception()
            if exc is None:
                if result is None:
                    result = future.result()
            elif not isinstance(exc, BLETimeoutError):
                error = exc
        if result is not None:
            return result
        if error is not None:
            raise error
        return None

    async def _start(self, session: TransferSession) -> None:
        session.set_phase(TransferPhase.STARTING)
        self._checkpoint(session)

        if self.config.start_delay > 0:
            await asyncio.sleep(self.config.start_delay)

        frame = await self._send_and_wait(
            NotificationKind.START_ACK,
            build_start_transfer_command(session.total_length, session.chunk_count, session.filename),
            self.config.start_timeout,
        )
        ack = decode_as(frame, StartAck)
        if ack.failed:
            raise TransferRejectedError("Device rejected transfer start", TransferPhase.STARTING)

        start_index = ack.bytes_written // session.chunk_size
        if start_index > session.chunk_count:
            _LOGGER.warning(
                "Device reports %d bytes written, beyond file size %d; starting over",
                ack.bytes_written,
                session.total_length,
            )
            start_index = 0
        elif start_index > 0:
            _LOGGER.info("Resuming %s at chunk %d/%d", session.filename, start_index, session.chunk_count)
        session.start_index = start_index

    async def _stream(self, session: TransferSession, progress_callback: ProgressCallback | None) -> None:
        session.set_phase(TransferPhase.STREAMING)
        if session.start_index and progress_callback:
            progress_callback(session.start_index, session.chunk_count)

        index = session.start_index
        while index < session.chunk_count:
            self._checkpoint(session, index)

            if session.resume_redirect is not None:
                redirect = session.resume_redirect
                session.resume_redirect = None
                if 0 <= redirect < session.chunk_count:
                    if redirect != index:
                        _LOGGER.info("Device redirected stream from chunk %d to %d", index, redirect)
                    index = redirect
                else:
                    _LOGGER.warning(
                        "Ignoring out-of-range resume index %d (chunk count %d)",
                        redirect,
                        session.chunk_count,
                    )

            if session.end_failed_mid_stream or session.retransmit_queue:
                end_failed = session.end_failed_mid_stream
                _LOGGER.warning(
                    "Pausing stream at chunk %d: %s",
                    index,
                    "end failure signalled" if end_failed else "retransmits queued",
                )
                await self._drain_retransmits(session, index)
                if end_failed:
                    return
                session.set_phase(TransferPhase.STREAMING)
                continue

            payload = session.chunk_payload(index)
            await self._transport.send(
                build_data_chunk_command(payload),
                prefer_unacknowledged=self._chunk_unacknowledged(index),
            )
            session.chunks_sent += 1
            if progress_callback:
                progress_callback(index + 1, session.chunk_count)

            await asyncio.sleep(self._pacing.interval)
            self._pacing.on_clean()
            index += 1

        while session.retransmit_queue:
            await self._drain_retransmits(session, index)

    async def _drain_retransmits(self, session: TransferSession, index: int | None = None) -> None:
        """Resend every queued chunk once, in request order."""
        session.drain_rounds += 1
        if session.drain_rounds > self.config.max_retransmit_rounds:
            raise TransferTimeoutError(
                f"Retransmit requests did not settle after {self.config.max_retransmit_rounds} rounds",
                session.phase,
                index,
            )

        session.set_phase(TransferPhase.RETRANSMITTING)
        for chunk_index in session.take_retransmits():
            self._checkpoint(session, chunk_index)
            payload = session.chunk_cache.get(chunk_index)
            if payload is None:
                _LOGGER.warning("Retransmit requested for chunk %d which was never sent, skipping", chunk_index)
                continue
            _LOGGER.warning("Retransmitting chunk %d", chunk_index)
            await self._transport.send(
                build_data_chunk_command(payload),
                prefer_unacknowledged=self._chunk_unacknowledged(chunk_index),
            )
            session.retransmits += 1
            self._pacing.on_retransmit()
            await asyncio.sleep(self._pacing.interval)

    async def _end(self, session: TransferSession) -> None:
        self._checkpoint(session)

        # Drop notices raised during the settle are still queued and resent before C2
        if self.config.pre_end_settle > 0 and not session.end_failed_mid_stream:
            settle = max(self.config.pre_end_settle, self._pacing.interval * 3)
            _LOGGER.debug("Settling %.2fs before end of transfer", settle)
            await asyncio.sleep(settle)
            while session.retransmit_queue and not session.end_failed_mid_stream:
                await self._drain_retransmits(session)

        session.set_phase(TransferPhase.ENDING)
        self._checkpoint(session)
        session.end_failed_mid_stream = False

        frame = await self._send_and_race(build_end_transfer_command(), self.config.end_ack_timeout)
        attempts = 0
        while True:
            self._checkpoint(session)
            if frame is not None and notification_kind(frame) == NotificationKind.END_ACK:
                break

            attempts += 1
            if frame is None:
                _LOGGER.warning(
                    "No end acknowledgement yet (%d/%d)", attempts, self.config.max_end_attempts
                )
                next_frame = None
            else:
                drop = decode_as(frame, ChunkDropNotice)
                next_frame = None
                if drop.dropped:
                    next_frame = await self._resend_dropped(session, drop.index)

            if next_frame is not None and notification_kind(next_frame) == NotificationKind.END_ACK:
                frame = next_frame
                break

            if attempts >= self.config.max_end_attempts:
                raise TransferTimeoutError(
                    f"No end acknowledgement after {attempts} attempts",
                    TransferPhase.ENDING,
                )

            if next_frame is not None:
                frame = next_frame
            else:
                frame = await self._send_and_race(None, self.config.end_ack_timeout)

        ack = decode_as(frame, EndAck)
        if ack.failed:
            await self._recover(session)

    async def _resend_dropped(self, session: TransferSession, index: int) -> bytes | None:
        """Resend a chunk named by a drop notice until the device moves on.

        Returns:
            An end ack, a drop notice naming a different chunk, or None
        """
        limit = self.config.max_chunk_resends
        for attempt in range(1, limit + 1):
            self._checkpoint(session, index)
            payload = session.chunk_cache.get(index)
            if payload is None:
                _LOGGER.warning("Chunk %d requested but not cached, cannot resend", index)
                return None

            _LOGGER.warning("Resending chunk %d (attempt %d/%d)", index, attempt, limit)
            session.retransmits += 1
            frame = await self._send_and_race(
                build_data_chunk_command(payload),
                self.config.retransmit_ack_timeout,
                prefer_unacknowledged=self._chunk_unacknowledged(index),
            )
            if frame is None:
                await asyncio.sleep(self._pacing.interval)
                continue
            if notification_kind(frame) == NotificationKind.END_ACK:
                return frame

            drop = decode_as(frame, ChunkDropNotice)
            if drop.dropped and drop.index != index:
                _LOGGER.warning("Device now requests chunk %d (was %d)", drop.index, index)
                return frame
        return None

    async def _recover(self, session: TransferSession) -> None:
        """Service late drop notices after a failed end ack, then retry the end once."""
        window = self.config.end_recovery_window
        if window <= 0:
            raise TransferRejectedError("Device reported end of transfer failed", TransferPhase.ENDING)

        session.set_phase(TransferPhase.RECOVERING)
        _LOGGER.warning("End of transfer failed, listening %.1fs for retransmit requests", window)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + window
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            self._checkpoint(session)
            frame = await self._wait_optional(
                NotificationKind.CHUNK_DROP, min(self.config.end_recovery_poll, remaining)
            )
            if frame is None:
                continue
            drop = decode_as(frame, ChunkDropNotice)
            if not drop.dropped:
                continue
            payload = session.chunk_cache.get(drop.index)
            if payload is None:
                _LOGGER.warning("Chunk %d requested but not cached, cannot resend", drop.index)
                continue
            _LOGGER.warning("Recovery resend of chunk %d", drop.index)
            await self._transport.send(
                build_data_chunk_command(payload),
                prefer_unacknowledged=self._chunk_unacknowledged(drop.index),
            )
            session.retransmits += 1
            await asyncio.sleep(self._pacing.interval)

        self._checkpoint(session)
        _LOGGER.warning("Resending end of transfer")
        frame = await self._send_and_wait(
            NotificationKind.END_ACK,
            build_end_transfer_command(),
            self.config.final_end_timeout,
        )
        ack = decode_as(frame, EndAck)
        if ack.failed:
            raise TransferRejectedError(
                "Device reported end of transfer failed after recovery",
                TransferPhase.RECOVERING,
            )

    async def _commit(self, session: TransferSession) -> None:
        session.set_phase(TransferPhase.COMMITTING)
        self._checkpoint(session)

        if self.config.commit_settle > 0:
            await asyncio.sleep(self.config.commit_settle)

        frame = await self._send_and_wait(
            NotificationKind.COMMIT_ACK,
            build_commit_command(session.filename),
            self.config.commit_timeout,
        )
        ack = decode_as(frame, CommitAck)
        if ack.failed:
            raise TransferRejectedError("Device rejected file commit", TransferPhase.COMMITTING)
