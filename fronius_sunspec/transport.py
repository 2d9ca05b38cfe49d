"""Modbus TCP / RTU transport for SunSpec register reads

One transport serves one device session. Reads are blocking; pymodbus
errors are translated into ModbusError with a TRANSIENT or FATAL severity.
"""

import errno
import logging
from typing import List, Optional

from pymodbus.client import ModbusSerialClient, ModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException

from .config import ModbusConfig
from .errors import ModbusError
from .logging_setup import get_logger

# Illegal function / data address / data value
FATAL_EXCEPTION_CODES = (1, 2, 3)

MODBUS_EXCEPTION_NAMES = {
    1: "Illegal function",
    2: "Illegal data address",
    3: "Illegal data value",
    4: "Slave device failure",
    5: "Acknowledge",
    6: "Slave device busy",
    8: "Memory parity error",
    10: "Gateway path unavailable",
    11: "Gateway target device failed to respond",
}


class ModbusTransport:
    """Blocking holding-register reader over Modbus TCP or RTU (8-N-1)."""

    def __init__(self, config: ModbusConfig):
        self.config = config
        self.log = get_logger()
        self.client = None
        self.successful_reads = 0
        self.failed_reads = 0

        # Suppress pymodbus exception logging unless debugging the wire
        logging.getLogger("pymodbus").setLevel(
            logging.DEBUG if config.debug else logging.CRITICAL
        )

    @property
    def timeout(self) -> float:
        return self.config.sec_timeout + self.config.usec_timeout / 1_000_000

    @property
    def endpoint(self) -> str:
        if self.config.use_tcp:
            return f"{self.config.host}:{self.config.port}"
        return f"{self.config.device}@{self.config.baud}"

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.connected

    def _create_client(self):
        if self.config.use_tcp:
            return ModbusTcpClient(
                host=self.config.host,
                port=self.config.port,
                timeout=self.timeout
            )
        return ModbusSerialClient(
            port=self.config.device,
            baudrate=self.config.baud,
            bytesize=8,
            parity='N',
            stopbits=1,
            timeout=self.timeout
        )

    def connect(self):
        """
        Create the pymodbus client and open the connection.

        Raises:
            ModbusError: FATAL for a missing host/device, TRANSIENT if the
                client cannot be created or the connection is refused
        """
        if self.config.use_tcp and not self.config.host:
            raise ModbusError.fatal("Modbus TCP host must not be empty")
        if not self.config.use_tcp and not self.config.device:
            raise ModbusError.fatal("Modbus RTU device must not be empty")

        if self.client is not None:
            self.client.close()

        try:
            self.client = self._create_client()
        except (ValueError, TypeError, OSError) as e:
            self.client = None
            raise ModbusError(
                errno.ENOMEM, f"Failed to create Modbus context for {self.endpoint}: {e}"
            ) from e

        try:
            connected = self.client.connect()
        except (ConnectionException, OSError) as e:
            raise ModbusError(
                errno.ECONNREFUSED, f"Connection to {self.endpoint} failed: {e}"
            ) from e

        if not connected:
            raise ModbusError(errno.ECONNREFUSED, f"Connection to {self.endpoint} refused")

        self.log.info(f"Modbus connected to {self.endpoint} (slave {self.config.slave_id})")

    def disconnect(self):
        """Close the connection."""
        if self.client is not None:
            self.client.close()
            self.client = None
            self.log.info(f"Modbus disconnected from {self.endpoint}")

    def read_registers(self, address: int, count: int) -> List[int]:
        """
        Read holding registers (function 0x03).

        Args:
            address: First register (0-based PDU address)
            count: Number of registers

        Returns:
            List of count 16-bit register values

        Raises:
            ModbusError: FATAL for illegal function/address/value responses,
                TRANSIENT for timeouts, disconnects and short responses
        """
        if self.client is None:
            raise ModbusError(errno.ENOTCONN, "Modbus client not connected")

        window = f"[{address}, {address + count})"
        try:
            result = self.client.read_holding_registers(
                address=address,
                count=count,
                device_id=self.config.slave_id
            )
        except ConnectionException as e:
            self.failed_reads += 1
            raise ModbusError(errno.ECONNRESET, f"Read {window}: connection lost: {e}") from e
        except ModbusException as e:
            self.failed_reads += 1
            raise ModbusError(errno.ETIMEDOUT, f"Read {window}: {e}") from e

        if result.isError():
            self.failed_reads += 1
            raise self._classify_error(result, window)

        registers = getattr(result, 'registers', None)
        if registers is None or len(registers) < count:
            self.failed_reads += 1
            got = 0 if registers is None else len(registers)
            raise ModbusError(errno.EIO, f"Read {window}: short response ({got} of {count} registers)")

        self.successful_reads += 1
        self.log.debug(f"Slave {self.config.slave_id}: read {window}")
        return list(registers[:count])

    @staticmethod
    def _classify_error(result, window: str) -> ModbusError:
        exception_code: Optional[int] = getattr(result, 'exception_code', None)
        if exception_code is None:
            return ModbusError(errno.EIO, f"Read {window}: {result}")

        name = MODBUS_EXCEPTION_NAMES.get(exception_code, f"Unknown exception {exception_code}")
        message = f"Read {window}: Modbus exception {exception_code} ({name})"
        if exception_code in FATAL_EXCEPTION_CODES:
            return ModbusError.fatal(message, code=errno.EPROTO, exception_code=exception_code)
        return ModbusError(errno.EAGAIN, message, exception_code=exception_code)


class ReconnectPolicy:
    """
    Caller-side backoff between reconnect attempts.

    The delay starts at reconnect_delay. When exponential, each failure
    doubles it up to reconnect_delay_max; reset() restores the initial delay
    after a successful poll.
    """

    def __init__(self, reconnect_delay: float, reconnect_delay_max: float,
                 exponential: bool = True):
        self.initial_delay = reconnect_delay
        self.max_delay = reconnect_delay_max
        self.exponential = exponential
        self.delay = reconnect_delay

    @classmethod
    def from_config(cls, config: ModbusConfig) -> 'ReconnectPolicy':
        return cls(config.reconnect_delay, config.reconnect_delay_max, config.exponential)

    def next_delay(self) -> float:
        """Return the delay to wait now and advance the backoff."""
        delay = self.delay
        if self.exponential:
            self.delay = min(self.delay * 2, self.max_delay)
        return delay

    def reset(self):
        self.delay = self.initial_delay
