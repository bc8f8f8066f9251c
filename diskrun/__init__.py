"""diskrun - build bootable VM disks from packages and run them.

This package orchestrates disk image construction for a package and
hands the finished image to one of several hypervisor backends.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
