import os
import subprocess
import logging
logger = logging.getLogger("ectester")

from ectester.utils import GuardError, TesterError

SYS_MODULE = "/sys/module"

class DriverGuard():
	"""
	Keeps the host kernel driver of the board away from it while the
	fixture runs. Used as a context manager, the driver is allowed
	again on every exit path.
	"""

	def __init__(self, module: str, conf_path: str, sysfs_module_root: str = SYS_MODULE):
		self.module = module
		self.conf_path = conf_path
		self.sysfs_module_root = sysfs_module_root

	def block(self):
		logger.info(f"Blocking module {self.module}")
		try:
			with open(self.conf_path, "w") as file:
				file.write(f"blacklist {self.module}\n")
		except OSError as err:
			raise GuardError(f"failed to block module {self.module}: {err}") from err

		if not os.path.exists(os.path.join(self.sysfs_module_root, self.module)):
			return

		logger.info(f"Removing module {self.module}")
		try:
			proc = subprocess.run(["modprobe", "--remove", self.module])
		except OSError as err:
			self.allow()
			raise GuardError(f"failed to run modprobe: {err}") from err

		if proc.returncode != 0:
			self.allow()
			raise GuardError(f"failed to remove module {self.module}: modprobe exited with status {proc.returncode}")

	def allow(self):
		logger.info(f"Allowing module {self.module}")
		try:
			os.remove(self.conf_path)
		except OSError as err:
			raise GuardError(f"failed to allow module {self.module}: {err}") from err

	def __enter__(self):
		self.block()
		return self

	def __exit__(self, exc_type, exc_value, traceback):
		try:
			self.allow()
		except TesterError as err:
			if exc_value is None:
				raise
			# the error that failed the run is the one worth reporting
			logger.error(str(err))

		return False
