import re
import time
import logging
logger = logging.getLogger("ectester")

class TesterError(Exception):
	"Base class for every error that fails a fixture run"
	pass

class TransportError(TesterError):
	"Raised on USB, HID, EC or filesystem I/O failures"
	pass

class CardinalityError(TesterError):
	"Raised when zero or several devices are found where exactly one is required"
	pass

class RetryTimeout(TesterError):
	pass

class VerificationError(TesterError):
	"Raised when a board answers with unexpected identity or fan readings"
	pass

class ConfigError(TesterError):
	pass

class GuardError(TesterError):
	pass

class RetryBudget():
	"""
	Bounded polling loop. probe() is called at most `attempts` times
	with `interval` seconds of sleep between unsuccessful attempts.
	There is no notification mechanism for USB or block device
	enumeration so every wait in the fixture goes through this.
	"""

	def __init__(self, attempts: int, interval: float = 1):
		if attempts < 1:
			raise ValueError(f"invalid retry count {attempts}")
		self.attempts = attempts
		self.interval = interval

	def poll(self, probe, message: str):
		result = None
		for attempt in range(1, self.attempts + 1):
			result = probe()
			if result:
				return result

			logger.info(f"{message} ({attempt}/{self.attempts})")
			if attempt < self.attempts:
				time.sleep(self.interval)

		return result

def parse_usb_ids(usb_id: str) -> tuple:
	expr = re.compile("^([0-9a-fA-F]{1,4}):([0-9a-fA-F]{1,4})$")
	m = expr.match(usb_id)
	if m is None:
		raise ConfigError(f"invalid USB ID {usb_id}")
	vid = int(m.group(1), base=16)
	pid = int(m.group(2), base=16)
	return (vid,pid)

def is_usb_path(usb_addr) -> bool:
	return isinstance(usb_addr, tuple) and isinstance(usb_addr[1], tuple)

def prettify_usb_addr(usb_addr) -> str:
	if is_usb_path(usb_addr):
		return f"{usb_addr[0]}-{'.'.join([str(x) for x in usb_addr[1]])}"
	else:
		return f"{usb_addr[0]:04x}:{usb_addr[1]:04x}"
