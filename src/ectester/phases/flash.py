import os
import time
import logging
logger = logging.getLogger("ectester")

from ectester.config import fixture_config
from ectester.mount import resolve_mount, MountError
from ectester.scan import scan_bootloader_devices
from ectester.utils import RetryBudget, CardinalityError, TransportError

def write_firmware(mount: str, name: str, blob: bytes):
	path = os.path.join(mount, name)
	logger.info(f"Writing firmware to {path}")
	try:
		with open(path, "wb") as file:
			file.write(blob)
			file.flush()
			os.fsync(file.fileno())
	except OSError as err:
		raise TransportError(f"failed to write firmware: {err}") from err

def flash_firmware():
	vendor = fixture_config["bootloader-vendor"]
	model = fixture_config["bootloader-model"]
	budget = RetryBudget(fixture_config["bootloader-retries"], fixture_config["poll-interval"])

	bootloaders = budget.poll(lambda: scan_bootloader_devices(vendor, model),
		"Waiting for EC to reset to bootloader")

	# flashing the wrong unit can't be undone, never guess
	if len(bootloaders) != 1:
		raise CardinalityError(f"found {len(bootloaders)} bootloaders, expected 1")

	for dev in bootloaders:
		logger.info(f"Found bootloader at {dev}")

		# the OS needs a moment before the device can be mounted
		time.sleep(fixture_config["settle-delay"])
		mount = resolve_mount(dev, fixture_config["mount-command"])
		if mount is None:
			if fixture_config["strict-mount"]:
				raise MountError(f"no mount point found for {dev} after mounting it")
			logger.warning(f"No mount point found for {dev}, skipping it")
			continue

		write_firmware(mount, fixture_config["firmware-name"], fixture_config["firmware-blob"])
