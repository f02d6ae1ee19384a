"""actions_hub: build and publish changed actions as multi-arch images."""

__version__ = "0.1.0"
