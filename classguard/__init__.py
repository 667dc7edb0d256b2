"""classguard: finalizer-gated deletion controller for machine classes."""

__version__ = "0.1.0"
