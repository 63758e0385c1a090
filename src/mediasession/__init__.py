"""Media-session client: PKCE OAuth, token lifecycle and playback-state sync."""

__version__ = "0.1.0"
