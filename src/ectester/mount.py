import re
import subprocess
import logging
logger = logging.getLogger("ectester")

from ectester.utils import TransportError

PROC_MOUNTS = "/proc/mounts"

class MountError(TransportError):
	pass

def unescape_mount_field(field: str) -> str:
	# /proc/mounts escapes space, tab, newline and backslash as octal
	return re.sub(r"\\([0-7]{3})", lambda m: chr(int(m.group(1), 8)), field)

def find_mount_by_dev(dev: str, mounts_path: str = PROC_MOUNTS):
	try:
		with open(mounts_path, "r") as file:
			lines = file.readlines()
	except OSError as err:
		raise TransportError(f"failed to find mount point for {dev}: {err}") from err

	for line in lines:
		fields = line.split()
		if len(fields) < 2:
			continue

		if unescape_mount_field(fields[0]) == dev:
			return unescape_mount_field(fields[1])

	return None

def mount_block_device(dev: str, mount_command: list):
	cmd = list(mount_command) + [dev]
	logger.info(f"Mounting {dev}")
	logger.debug(f"Running {' '.join(cmd)}")
	try:
		proc = subprocess.run(cmd, capture_output=True, text=True)
	except OSError as err:
		raise MountError(f"failed to run {cmd[0]}: {err}") from err

	if proc.returncode != 0:
		raise MountError(f"failed to mount {dev}: {cmd[0]} exited with status {proc.returncode}: {proc.stderr.strip()}")

	logger.debug(proc.stdout.strip())

def resolve_mount(dev: str, mount_command: list, mounts_path: str = PROC_MOUNTS):
	"""
	Returns the mount point of dev, mounting it first if needed.
	None means that the mount command succeeded but no mount
	entry could be found for dev afterwards.
	"""
	mount = find_mount_by_dev(dev, mounts_path)
	if mount is not None:
		return mount

	mount_block_device(dev, mount_command)

	return find_mount_by_dev(dev, mounts_path)
