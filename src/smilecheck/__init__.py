"""SmileCheck: live single-face smile gate for a webcam feed."""

__version__ = "0.1.0"
