"""
Call recipients.

Keep this package lightweight: models are imported by their submodule path.
"""

__all__: list[str] = []
