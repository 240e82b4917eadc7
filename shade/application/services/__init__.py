from .configuration_manager import ConfigurationManager, OverlaySettings, debounce
from .overlay_presenter import OverlayPresenter

__all__ = ["ConfigurationManager", "OverlaySettings", "OverlayPresenter", "debounce"]
