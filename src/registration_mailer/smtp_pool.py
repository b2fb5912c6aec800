# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Bounded asyncio SMTP connection pool.

This module provides a connection pool shared by every send in the process.
At most ``max_connections`` connections exist at any time; a caller that
finds all of them busy waits for one to be released. Idle connections are
reused until they exceed their TTL, fail a health check, or reach
``max_messages_per_connection`` sent messages.

The pool handles connection lifecycle management including:
- TTL-based connection expiration
- Health checking via SMTP NOOP commands
- Recycling after a fixed number of messages
- Discarding connections that raised during use

Example:
    Using the SMTP pool for email sending::

        pool = SMTPPool.from_config(transport_config)

        async with pool.connection() as smtp:
            await pool.verify(smtp)
            await smtp.send_message(message)

        await pool.close()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiosmtplib

from .config_loader import TransportConfig
from .logger import get_logger

logger = get_logger("SMTPPool")


@dataclass
class PooledConnection:
    """An SMTP client with its pool bookkeeping."""

    smtp: aiosmtplib.SMTP
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    messages_sent: int = 0

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def age(self) -> float:
        return time.monotonic() - self.created_at

    def idle_time(self) -> float:
        return time.monotonic() - self.last_used


class SMTPPool:
    """Asyncio-compatible SMTP connection pool bounded by ``max_connections``.

    Attributes:
        host: SMTP server hostname.
        port: SMTP server port.
        use_tls: Whether to use implicit TLS. When False the connection is
            upgraded with STARTTLS if the server offers it.
        max_connections: Maximum number of open connections.
        max_messages_per_connection: Messages sent before a connection is
            closed and replaced.
        ttl: Maximum age in seconds of a reusable connection.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str | None = None,
        password: str | None = None,
        *,
        use_tls: bool = False,
        max_connections: int = 5,
        max_messages_per_connection: int = 100,
        ttl: int = 300,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.max_connections = max(1, int(max_connections))
        self.max_messages_per_connection = max(1, int(max_messages_per_connection))
        self.ttl = ttl
        self.timeout = timeout
        self.idle: list[PooledConnection] = []
        self.in_use = 0
        self.lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(self.max_connections)

    @classmethod
    def from_config(cls, config: TransportConfig, **kwargs) -> SMTPPool:
        """Build a pool from a resolved :class:`TransportConfig`."""
        return cls(
            config.host,
            config.port,
            config.credentials.user,
            config.credentials.secret,
            use_tls=config.use_implicit_tls,
            max_connections=config.max_connections,
            max_messages_per_connection=config.max_messages_per_connection,
            **kwargs,
        )

    async def _connect(self) -> aiosmtplib.SMTP:
        """Establish a new SMTP connection and authenticate.

        TLS behavior:
        - use_tls=True: implicit TLS from the first byte (port 465)
        - use_tls=False: plain connection upgraded with STARTTLS when the
          server advertises it

        Raises:
            asyncio.TimeoutError: If connecting takes longer than the timeout.
            aiosmtplib.SMTPException: If connection or authentication fails.
        """
        if self.use_tls:
            smtp = aiosmtplib.SMTP(
                hostname=self.host, port=self.port, use_tls=True, start_tls=False, timeout=self.timeout
            )
        else:
            smtp = aiosmtplib.SMTP(
                hostname=self.host, port=self.port, use_tls=False, start_tls=None, timeout=self.timeout
            )

        async def _do_connect():
            await smtp.connect()
            if self.user and self.password:
                await smtp.login(self.user, self.password)

        # Outer bound in case the client timeout does not fire
        await asyncio.wait_for(_do_connect(), timeout=self.timeout + 5.0)
        logger.debug("Opened SMTP connection to %s:%s", self.host, self.port)
        return smtp

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        """Return True if ``smtp`` answers NOOP with 250 within five seconds."""
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
            return code == 250
        except Exception:
            return False

    async def _close(self, conn: PooledConnection) -> None:
        try:
            await conn.smtp.quit()
        except Exception as exc:
            logger.debug("Ignoring error while closing SMTP connection: %s", exc)

    async def verify(self, smtp: aiosmtplib.SMTP) -> None:
        """Check that ``smtp`` is reachable and authenticated.

        Raises:
            asyncio.TimeoutError: If the server does not answer in time.
            aiosmtplib.SMTPResponseException: If NOOP is not answered with 250.
        """
        code, message = await asyncio.wait_for(smtp.noop(), timeout=self.timeout)
        if code != 250:
            raise aiosmtplib.SMTPResponseException(code, message)

    async def _acquire(self) -> PooledConnection:
        stale: list[PooledConnection] = []
        candidate: PooledConnection | None = None
        async with self.lock:
            while self.idle:
                conn = self.idle.pop()
                if conn.age() < self.ttl:
                    candidate = conn
                    break
                stale.append(conn)

        for conn in stale:
            await self._close(conn)

        if candidate is not None:
            if await self._is_alive(candidate.smtp):
                candidate.touch()
                return candidate
            await self._close(candidate)

        return PooledConnection(smtp=await self._connect())

    async def _release(self, conn: PooledConnection) -> None:
        conn.messages_sent += 1
        if conn.messages_sent >= self.max_messages_per_connection:
            await self._close(conn)
            return
        conn.touch()
        async with self.lock:
            self.idle.append(conn)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosmtplib.SMTP]:
        """Borrow a connection, waiting while ``max_connections`` are busy.

        A connection whose block raises is closed instead of returned.

        Yields:
            A connected and authenticated ``aiosmtplib.SMTP`` client.
        """
        async with self._slots:
            conn = await self._acquire()
            self.in_use += 1
            try:
                yield conn.smtp
            except BaseException:
                self.in_use -= 1
                await self._close(conn)
                raise
            self.in_use -= 1
            await self._release(conn)

    async def cleanup(self) -> None:
        """Close idle connections that exceeded the TTL or fail NOOP."""
        async with self.lock:
            items = list(self.idle)
            self.idle.clear()

        keep: list[PooledConnection] = []
        for conn in items:
            if conn.age() < self.ttl and await self._is_alive(conn.smtp):
                keep.append(conn)
            else:
                await self._close(conn)

        async with self.lock:
            self.idle.extend(keep)

    async def close(self) -> None:
        """Close every idle connection."""
        async with self.lock:
            items = list(self.idle)
            self.idle.clear()
        for conn in items:
            await self._close(conn)
