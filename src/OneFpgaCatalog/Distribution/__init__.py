"""
Distribution tree builder for the 1FPGA catalog.

Transforms the declarative source tree into the published distribution tree,
runs directory build steps, and propagates versions, digests and signatures
up to the root ``catalog.json``.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
