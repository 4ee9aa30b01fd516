from .__about__ import __title__, __version__

__all__ = ["__title__", "__version__"]
