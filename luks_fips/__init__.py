"""Convert LUKS keyslot key-derivation parameters to FIPS-compliant values."""

from .__version__ import __version__

__all__ = ["__version__"]
