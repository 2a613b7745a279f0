"""evos — the state core of the EvOS synthetic cognition platform."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("evos")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
