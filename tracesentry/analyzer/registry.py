"""Detector registry — discovers and loads all available detectors."""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Type

from tracesentry.analyzer.base_detector import BaseDetector

logger = logging.getLogger(__name__)


class DetectorRegistry:
    """Registry for all trace vulnerability detectors.

    Discovers detectors from the `detectors` package and hands the
    analyzer an ID-ordered list of them.
    """

    def __init__(self) -> None:
        self._detectors: dict[str, Type[BaseDetector]] = {}
        self._loaded = False

    def discover(self) -> None:
        """Auto-discover all detector classes from the detectors package."""
        if self._loaded:
            return

        import tracesentry.analyzer.detectors as detectors_pkg

        for _finder, module_name, _is_pkg in pkgutil.walk_packages(
            detectors_pkg.__path__,
            prefix=detectors_pkg.__name__ + ".",
        ):
            try:
                module = importlib.import_module(module_name)
            except Exception as e:
                logger.warning("Failed to load detector module %s: %s", module_name, e)
                continue
            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (
                    isinstance(attr, type)
                    and issubclass(attr, BaseDetector)
                    and attr is not BaseDetector
                    and attr.DETECTOR_ID  # Must have an ID
                ):
                    self._detectors[attr.DETECTOR_ID] = attr

        self._loaded = True

    def get_all(self) -> list[Type[BaseDetector]]:
        """Return all discovered detector classes, ordered by ID."""
        self.discover()
        return [self._detectors[k] for k in sorted(self._detectors)]


# Global registry singleton
registry = DetectorRegistry()
