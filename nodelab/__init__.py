"""Node Lab: disposable QEMU nodes with Guacamole consoles."""

__version__ = "0.1.0"
