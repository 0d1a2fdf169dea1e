import time
import logging
logger = logging.getLogger("ectester")

from ectester.config import fixture_config
from ectester.protocols.ec import Ec
from ectester.scan import scan_ecs, close_ecs
from ectester.utils import RetryBudget, CardinalityError, VerificationError, parse_usb_ids

def check_identity(ec: Ec, expected_board: str, expected_version: str):
	board = ec.board()
	if board != expected_board:
		raise VerificationError(f"found board {board!r}, expected {expected_board!r}")

	version = ec.version()
	if version != expected_version:
		raise VerificationError(f"found version {version!r}, expected {expected_version!r}")

	logger.info(f"EC has expected firmware with board {board!r} and version {version!r}")

def check_fan(ec: Ec, index: int, pwm: int, min_rpm: int, settle_delay: float):
	logger.info(f"Testing fan {index} with PWM {pwm}")
	ec.fan_set(index, pwm)

	# let the motor spin up
	time.sleep(settle_delay)

	duty = ec.fan_get(index)
	if duty != pwm:
		raise VerificationError(f"fan {index} had PWM {duty}, expected {pwm}")

	rpm = ec.fan_tach(index)
	logger.info(f"Fan {index} running at {rpm} RPM")
	if rpm < min_rpm:
		raise VerificationError(f"fan {index} had RPM {rpm}, expected at least {min_rpm}")

def verify_runtime():
	usb_id = parse_usb_ids(fixture_config["runtime-usb-id"])
	interface = fixture_config["runtime-usb-interface"]
	budget = RetryBudget(fixture_config["runtime-retries"], fixture_config["poll-interval"])

	ecs = budget.poll(lambda: scan_ecs(usb_id, interface, fixture_config["hid-retries"],
		fixture_config["hid-timeout"], hard=True), "Waiting for EC to reset to runtime")

	try:
		if len(ecs) != 1:
			raise CardinalityError(f"found {len(ecs)} ECs, expected 1")

		ec = ecs[0]
		check_identity(ec, fixture_config["board"], fixture_config["version"])

		for index in range(fixture_config["fan-count"]):
			check_fan(ec, index, fixture_config["fan-pwm"], fixture_config["min-rpm"],
				fixture_config["settle-delay"])
	finally:
		close_ecs(ecs)
