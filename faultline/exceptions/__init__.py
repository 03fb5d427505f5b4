"""Exception capture module."""

from .capture import CapturedFrame, CaptureScope, CaptureTrap, is_application_path
from .handler import UncaughtExceptionHandler

__all__ = [
    'CaptureScope',
    'CaptureTrap',
    'CapturedFrame',
    'UncaughtExceptionHandler',
    'is_application_path',
]
