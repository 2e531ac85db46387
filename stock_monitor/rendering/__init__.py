"""Page rendering for availability checks."""

from .renderer import PlaywrightRenderer, Renderer

__all__ = ["PlaywrightRenderer", "Renderer"]
