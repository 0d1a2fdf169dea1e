import logging
logger = logging.getLogger("ectester")

from ectester.config import fixture_config
from ectester.guard import DriverGuard
from ectester.phases.unlock import reset_bootloader
from ectester.phases.flash import flash_firmware
from ectester.phases.functional import verify_runtime

def run_tester():
	guard = DriverGuard(fixture_config["kernel-module"], fixture_config["modprobe-conf"])

	with guard:
		logger.info("Resetting EC(s) to bootloader")
		reset_bootloader()

		logger.info("Flashing firmware")
		flash_firmware()

		logger.info("Testing runtime firmware")
		verify_runtime()
