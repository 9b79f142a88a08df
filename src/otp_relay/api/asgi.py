"""ASGI entrypoint for the OTP relay API."""

from otp_relay.api.app import create_app
from otp_relay.containers import build_container

app = create_app(build_container())
