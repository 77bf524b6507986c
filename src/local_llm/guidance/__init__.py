"""
User-facing error handling.

- NotificationCenter: notification sink and history
- UserGuidanceSystem: troubleshooting guidance per error code and scenario
- ErrorHandler: recovery strategy selection and error statistics
"""

from local_llm.guidance.notifier import Notification, NotificationCenter
from local_llm.guidance.user_guidance import Guidance, UserGuidanceSystem, render_details
from local_llm.guidance.error_handler import ErrorHandler

__all__ = [
    "ErrorHandler",
    "Guidance",
    "Notification",
    "NotificationCenter",
    "UserGuidanceSystem",
    "render_details",
]
