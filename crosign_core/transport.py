"""
Byte-oriented transports to an external signing device.

A transport moves one APDU to the device and returns the raw answer:
response data followed by the two-byte status word.  It knows nothing
about the Cosmos app protocol; that lives in ``crosign_core.ledger``.

Concrete implementations:
    - HidTransport (USB HID through ``ledgerblue``, blocking calls run in a
      worker thread)
    - SpeculosTransport (Ledger emulator REST API over ``aiohttp``)
    - tests provide an in-memory fake device

Transport-level failures are reported as ``HardwareError`` with kind
``DEVICE_ABSENT`` or ``TIMEOUT``.  Nothing here retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol, runtime_checkable

import aiohttp

from crosign_core.config import HardwareConfig
from crosign_core.errors import HardwareError, HardwareErrorKind

logger = logging.getLogger("crosign_transport")

SW_OK = 0x9000


def _discard_outcome(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


@runtime_checkable
class Transport(Protocol):
    """Request/response channel to one physical (or emulated) device."""

    async def exchange(self, apdu: bytes) -> bytes:
        """Send one APDU; return response data + 2-byte status word."""
        ...

    async def close(self) -> None:
        ...


def split_status(response: bytes) -> tuple[bytes, int]:
    """Split a raw device answer into (data, status_word)."""
    if len(response) < 2:
        raise HardwareError(
            HardwareErrorKind.PROTOCOL,
            f"device answer too short ({len(response)} bytes)",
        )
    return response[:-2], int.from_bytes(response[-2:], "big")


class HidTransport:
    """
    USB HID transport backed by ``ledgerblue``.

    ``ledgerblue`` calls block, so each exchange runs in a worker thread
    and the event loop stays free while the user looks at the device.
    """

    def __init__(self, dongle: Any, comm_exception: type, timeout: float = 120.0):
        self._dongle = dongle
        self._comm_exception = comm_exception
        self.timeout = timeout
        self._worker: Optional[asyncio.Future] = None

    @classmethod
    async def open(cls, timeout: float = 120.0, debug: bool = False) -> HidTransport:
        try:
            from ledgerblue.comm import getDongle
            from ledgerblue.commException import CommException
        except ImportError as exc:
            raise ImportError(
                "ledgerblue is required for USB Ledger support. pip install 'crosign[hid]'"
            ) from exc
        try:
            dongle = await asyncio.to_thread(getDongle, debug)
        except CommException as exc:
            raise HardwareError(HardwareErrorKind.DEVICE_ABSENT, str(exc)) from exc
        logger.info("Ledger device connected over USB HID")
        return cls(dongle, CommException, timeout)

    async def exchange(self, apdu: bytes) -> bytes:
        if self._dongle is None:
            raise HardwareError(HardwareErrorKind.DEVICE_ABSENT, "transport is closed")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        if self._worker is not None and not self._worker.done():
            # a timed-out request is still blocking on the device
            await asyncio.wait({self._worker}, timeout=self.timeout)
            if not self._worker.done():
                raise HardwareError(
                    HardwareErrorKind.TIMEOUT,
                    "device is still busy with an earlier request",
                )
        timeout_ms = int(self.timeout * 1000)
        worker = asyncio.ensure_future(
            asyncio.to_thread(self._dongle.exchange, bytes(apdu), timeout_ms)
        )
        worker.add_done_callback(_discard_outcome)
        self._worker = worker
        try:
            data = await asyncio.wait_for(
                asyncio.shield(worker), timeout=max(deadline - loop.time(), 0),
            )
        except asyncio.TimeoutError as exc:
            raise HardwareError(
                HardwareErrorKind.TIMEOUT,
                f"no answer from device within {self.timeout:.0f}s",
            ) from exc
        except self._comm_exception as exc:
            sw = getattr(exc, "sw", None)
            if not sw:
                raise HardwareError(HardwareErrorKind.DEVICE_ABSENT, str(exc)) from exc
            # ledgerblue raises on any non-0x9000 status; hand it back raw
            return bytes(getattr(exc, "data", None) or b"") + sw.to_bytes(2, "big")
        except OSError as exc:
            raise HardwareError(HardwareErrorKind.DEVICE_ABSENT, str(exc)) from exc
        return bytes(data) + SW_OK.to_bytes(2, "big")

    async def close(self) -> None:
        if self._dongle is not None:
            dongle, self._dongle = self._dongle, None
            await asyncio.to_thread(dongle.close)


class SpeculosTransport:
    """Transport to the Speculos Ledger emulator's ``/apdu`` endpoint."""

    def __init__(
        self,
        url: str = "http://127.0.0.1:5000",
        timeout: float = 120.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def exchange(self, apdu: bytes) -> bytes:
        session = self._get_session()
        try:
            async with session.post(
                f"{self.url}/apdu", json={"data": bytes(apdu).hex()},
            ) as resp:
                if resp.status != 200:
                    raise HardwareError(
                        HardwareErrorKind.PROTOCOL,
                        f"emulator answered HTTP {resp.status}",
                    )
                body = await resp.json()
        except asyncio.TimeoutError as exc:
            raise HardwareError(
                HardwareErrorKind.TIMEOUT,
                f"no answer from emulator within {self.timeout:.0f}s",
            ) from exc
        except aiohttp.ClientConnectionError as exc:
            raise HardwareError(HardwareErrorKind.DEVICE_ABSENT, str(exc)) from exc
        try:
            return bytes.fromhex(body["data"])
        except (KeyError, TypeError, ValueError) as exc:
            raise HardwareError(
                HardwareErrorKind.PROTOCOL, "malformed emulator response",
            ) from exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


async def open_transport(cfg: HardwareConfig) -> Transport:
    """Build the transport selected in configuration."""
    if cfg.transport == "hid":
        return await HidTransport.open(timeout=cfg.timeout_seconds)
    if cfg.transport == "speculos":
        return SpeculosTransport(cfg.speculos_url, timeout=cfg.timeout_seconds)
    raise ValueError(f"Unknown transport '{cfg.transport}' (expected 'hid' or 'speculos')")
