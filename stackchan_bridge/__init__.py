"""Chat bridge operating a Stack-chan robot over MQTT."""

__version__ = "0.1.0"
