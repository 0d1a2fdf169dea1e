import logging
logger = logging.getLogger("ectester")

from ectester.config import fixture_config
from ectester.protocols.ec import SecurityState
from ectester.scan import scan_ecs, close_ecs
from ectester.utils import RetryBudget, RetryTimeout, parse_usb_ids

def unlock_step(ecs: list) -> int:
	"""
	One pass of the security state machine over all ECs, returns the
	number of unlocked ECs. Unlock itself is only reached through the
	power button, PrepareUnlock is what arms it.
	"""
	unlocked = 0
	for ec in ecs:
		state = ec.security_get()
		if state in [SecurityState.LOCK, SecurityState.PREPARE_LOCK]:
			ec.security_set(SecurityState.PREPARE_UNLOCK)
		elif state == SecurityState.UNLOCK:
			unlocked += 1

	return unlocked

def unlock_ecs(ecs: list, budget: RetryBudget):
	progress = {"unlocked": 0}

	def probe():
		progress["unlocked"] = unlock_step(ecs)
		return progress["unlocked"] == len(ecs)

	if not budget.poll(probe, "PRESS POWER BUTTON TO UNLOCK"):
		locked = len(ecs) - progress["unlocked"]
		raise RetryTimeout(f"timed out waiting for unlock, {locked} of {len(ecs)} ECs still locked")

def reset_bootloader():
	usb_id = parse_usb_ids(fixture_config["usb-id"])
	ecs = scan_ecs(usb_id, fixture_config["usb-interface"],
		fixture_config["hid-retries"], fixture_config["hid-timeout"])

	try:
		if ecs == []:
			logger.warning("No EC found, assuming the board is already in its bootloader")
			return

		logger.info(f"Found {len(ecs)} EC(s), unlocking")
		budget = RetryBudget(fixture_config["unlock-retries"], fixture_config["poll-interval"])
		unlock_ecs(ecs, budget)

		for ec in ecs:
			logger.info("Resetting EC")
			ec.reset()
	finally:
		close_ecs(ecs)
