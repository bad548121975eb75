"""A segmented virtual machine for VMX25 programs, with a disassembler and VMI25 images."""

__version__ = "0.1.0"
__all__ = ["__version__"]