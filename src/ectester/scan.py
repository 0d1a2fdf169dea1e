import os
import sys
import gc
import importlib
import usb.core
import logging
logger = logging.getLogger("ectester")

from ectester.protocols.hid import HIDDevice
from ectester.protocols.ec import Ec
from ectester.utils import prettify_usb_addr, TransportError

SYS_CLASS_BLOCK = "/sys/class/block"

def find_usb_devices(vid: int, pid: int, hard=False) -> list:
	"""
	Enumerates the bus for (vid, pid). A hard rescan reloads the
	libusb1 backend first, so that a board which just reenumerated
	with new firmware is not served from a stale libusb context.
	"""
	try:
		if hard:
			gc.collect()
			importlib.invalidate_caches()
			if "usb.backend.libusb1" in sys.modules:
				importlib.reload(sys.modules["usb.backend.libusb1"])

		return list(usb.core.find(find_all=True, idVendor=vid, idProduct=pid))
	except (usb.core.USBError, usb.core.NoBackendError) as err:
		raise TransportError(f"failed to enumerate USB devices {vid:04x}:{pid:04x}: {err}") from err

def has_interface(dev, interface: int) -> bool:
	for cfg in dev:
		for intf in cfg:
			if intf.bInterfaceNumber == interface:
				return True
	return False

def open_ec(dev, interface: int, retries: int, timeout: int) -> Ec:
	hid = HIDDevice(dev, interface)
	try:
		return Ec(hid, retries, timeout)
	except TransportError:
		hid.close()
		raise

def scan_ecs(usb_id: tuple, interface: int, retries: int = 10, timeout: int = 100, hard=False) -> list:
	"""
	Opens every EC matching (vid, pid, interface). A matching
	device that can't be opened fails the whole scan.
	"""
	(vid,pid) = usb_id

	ecs = []
	for dev in find_usb_devices(vid, pid, hard):
		if not has_interface(dev, interface):
			continue

		pretty_addr = prettify_usb_addr((dev.bus, dev.port_numbers))
		try:
			ecs.append(open_ec(dev, interface, retries, timeout))
		except (TransportError, OSError) as err:
			close_ecs(ecs)
			raise TransportError(f"failed to open EC at {pretty_addr}: {err}") from err

		logger.debug(f"Opened EC at {pretty_addr}")

	return ecs

def close_ecs(ecs: list):
	for ec in ecs:
		ec.close()

def read_sysfs_attr(path: str):
	try:
		with open(path, "r") as file:
			return file.read(-1)
	except (OSError, UnicodeDecodeError):
		return None

def scan_bootloader_devices(vendor: str, model: str, sysfs_root: str = SYS_CLASS_BLOCK) -> list:
	"""
	Returns the /dev paths of partitions whose disk reports the
	given vendor and model strings. Whole disks and most other
	block devices on a host are skipped without error.
	"""
	try:
		entries = sorted(os.listdir(sysfs_root))
	except OSError as err:
		raise TransportError(f"failed to discover block devices: {err}") from err

	bootloaders = []
	for entry in entries:
		path = os.path.join(sysfs_root, entry)
		if not os.path.isfile(os.path.join(path, "partition")):
			continue

		# a partition's sysfs directory lives inside its disk's
		disk = os.path.dirname(os.path.realpath(path))
		dev_vendor = read_sysfs_attr(os.path.join(disk, "device", "vendor"))
		dev_model = read_sysfs_attr(os.path.join(disk, "device", "model"))
		if dev_vendor is None or dev_model is None:
			continue

		if dev_vendor.strip() == vendor and dev_model.strip() == model:
			bootloaders.append(os.path.join("/dev", entry))

	return bootloaders
