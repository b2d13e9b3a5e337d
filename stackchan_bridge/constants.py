"""Constants used across the stackchan-bridge package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "stackchan-bridge"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_MQTT_URL = "mqtt://localhost:1883"
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTTS_PORT = 8883

DEFAULT_COMMAND_TOPIC = "stackchan/cmd"
DEFAULT_ACK_TOPIC = "stackchan/ack"
DEFAULT_STATE_TOPIC = "stackchan/state"
DEFAULT_NOTIFY_TOPIC = "stackchan/trello"

DEFAULT_LLM_MODEL = "gpt-4o-mini"

DEFAULT_TRELLO_API_URL = "https://api.trello.com"
MIN_DUE_SOON_POLL_SECONDS = 60.0
