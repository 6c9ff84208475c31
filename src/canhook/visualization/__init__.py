"""Local visualization components."""

from canhook.visualization.console import ConsoleVisualizer

__all__ = ["ConsoleVisualizer"]
