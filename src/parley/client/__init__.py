"""Python client for the relay."""

from .reconnecting import ClientConfig, ClientEvent, ClientState, ReconnectingClient

__all__ = ["ClientConfig", "ClientEvent", "ClientState", "ReconnectingClient"]
