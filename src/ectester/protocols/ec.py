# This file is part of ectester
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; either version 2
# of the License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.
#

from enum import IntEnum

from ectester.protocols.hid import HIDTimeout
from ectester.utils import TransportError
import logging
logger = logging.getLogger("ectester")

# request: report id, command, result, data
# response: command, result, data
REPORT_SIZE = 32
HID_CMD = 0
HID_RES = 1
HID_DATA = 2

EC_SIGNATURE = b"\x76\xec"

class EcError(TransportError):
	pass

class Cmd(IntEnum):
	PROBE = 1
	BOARD = 2
	VERSION = 3
	RESET = 6
	FAN_GET = 7
	FAN_SET = 8
	SECURITY_GET = 20
	SECURITY_SET = 21
	FAN_TACH = 22

class SecurityState(IntEnum):
	LOCK = 0
	PREPARE_LOCK = 1
	UNLOCK = 2
	PREPARE_UNLOCK = 3

class Ec():
	"""
	Command session with one EC over its HID interface. The EC is
	probed when the session is opened.
	"""

	def __init__(self, hid, retries: int = 10, timeout: int = 100):
		self.hid = hid
		self.retries = retries
		self.timeout = timeout
		self.data_size = REPORT_SIZE - HID_DATA

		self.board_name = None
		self.version_name = None

		data = self.command(Cmd.PROBE, bytes(3))
		if data[0:2] != EC_SIGNATURE:
			raise EcError(f"invalid EC signature {data[0:2].hex()}")
		self.protocol_version = data[2]
		logger.debug(f"EC protocol version {self.protocol_version}")

	def command_try(self, cmd: int, data: bytes):
		report = bytes([0, cmd, 0]) + data
		report += bytes(1 + REPORT_SIZE - len(report))
		self.hid.write(report)

		try:
			resp = self.hid.read(REPORT_SIZE, self.timeout)
		except HIDTimeout:
			return None

		if len(resp) != REPORT_SIZE:
			raise EcError(f"invalid response length {len(resp)} to command {cmd}")

		return resp

	def command(self, cmd: Cmd, data: bytes = b"") -> bytes:
		"""
		Runs one command and returns the full response payload.
		Read timeouts are retried, any other failure is not.
		"""
		if len(data) > self.data_size:
			raise EcError(f"command {cmd.name} data too long: {len(data)} > {self.data_size}")

		for i in range(self.retries):
			resp = self.command_try(cmd, data)
			if resp is None:
				logger.debug(f"EC command {cmd.name} timed out, retry {i + 1}/{self.retries}")
				continue

			if resp[HID_RES] != 0:
				raise EcError(f"command {cmd.name} failed with result {resp[HID_RES]}")

			return resp[HID_DATA:]

		raise EcError(f"command {cmd.name} timed out after {self.retries} attempts")

	def read_string(self, cmd: Cmd) -> str:
		data = self.command(cmd, bytes(self.data_size))
		end = data.find(0)
		if end >= 0:
			data = data[:end]
		try:
			return data.decode("utf-8")
		except UnicodeDecodeError as err:
			raise EcError(f"failed to parse {cmd.name.lower()}: {data}") from err

	def board(self) -> str:
		self.board_name = self.read_string(Cmd.BOARD)
		return self.board_name

	def version(self) -> str:
		self.version_name = self.read_string(Cmd.VERSION)
		return self.version_name

	def fan_get(self, index: int) -> int:
		data = self.command(Cmd.FAN_GET, bytes([index, 0]))
		return data[1]

	def fan_set(self, index: int, duty: int):
		self.command(Cmd.FAN_SET, bytes([index, duty]))

	def fan_tach(self, index: int) -> int:
		data = self.command(Cmd.FAN_TACH, bytes([index, 0, 0]))
		return int.from_bytes(data[1:3], "little")

	def security_get(self) -> SecurityState:
		data = self.command(Cmd.SECURITY_GET, bytes(1))
		try:
			return SecurityState(data[0])
		except ValueError as err:
			raise EcError(f"invalid security state {data[0]}") from err

	def security_set(self, state: SecurityState):
		self.command(Cmd.SECURITY_SET, bytes([state]))

	def reset(self):
		self.command(Cmd.RESET)

	def close(self):
		self.hid.close()
