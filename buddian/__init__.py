"""buddian - conversational assistant with a pluggable command and event layer."""

__version__ = "0.1.0"
__logo__ = "🤝"
