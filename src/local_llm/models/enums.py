"""
Enumerations for Local LLM Companion data models.

All enums are closed taxonomies - no values outside these sets are permitted.
"""

from enum import Enum


class ModelType(str, Enum):
    """Model kinds reported by the inference server."""
    
    LLM = "llm"
    VLM = "vlm"
    EMBEDDINGS = "embeddings"


class ModelState(str, Enum):
    """Model load state reported by the inference server."""
    
    LOADED = "loaded"
    NOT_LOADED = "not-loaded"


class MessageRole(str, Enum):
    """Chat message author role."""
    
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ApiObjectType(str, Enum):
    """Values of the `object` field in API responses."""
    
    MODEL = "model"
    CHAT_COMPLETION = "chat.completion"
    TEXT_COMPLETION = "text_completion"
    EMBEDDING = "embedding"


class StopReason(str, Enum):
    """Why generation stopped."""
    
    STOP = "stop"
    LENGTH = "length"
    STOP_SEQUENCE = "stop_sequence"


class ErrorCategory(str, Enum):
    """
    Top-level error taxonomy.
    
    Every client error belongs to exactly one category. Category decides
    default recovery strategy, notification level and degradation outcome.
    """
    
    CONNECTION = "connection"
    API = "api"
    MODEL = "model"
    VALIDATION = "validation"
    RUNTIME = "runtime"


class Feature(str, Enum):
    """
    Capabilities tracked independently by the degradation service.
    
    CONNECTION is the parent of all others: losing it forces the
    dependent features to UNAVAILABLE.
    """
    
    MODELS = "models"
    CHAT = "chat"
    COMPLETION = "completion"
    EMBEDDINGS = "embeddings"
    CONNECTION = "connection"


class FeatureState(str, Enum):
    """
    Availability of a feature.
    
    DISABLED is only entered through the DISABLE fallback strategy and
    requires an explicit re-enable.
    """
    
    AVAILABLE = "available"
    LIMITED = "limited"
    UNAVAILABLE = "unavailable"
    DISABLED = "disabled"


class FallbackStrategy(str, Enum):
    """What the degradation service returns when an operation fails."""
    
    CACHED = "cached"
    SIMPLIFIED = "simplified"
    GUIDANCE = "guidance"
    DISABLE = "disable"


class RecoveryStrategy(str, Enum):
    """How the error handler tries to recover from an error."""
    
    RETRY = "retry"
    USER_CHOICE = "user_choice"
    FALLBACK = "fallback"
    DISABLE = "disable"
    NONE = "none"


class NotificationLevel(str, Enum):
    """Severity of a user-facing notification."""
    
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    STATUS_BAR = "status_bar"
    SILENT = "silent"


class GuidanceType(str, Enum):
    """Kind of guidance entry."""
    
    QUICK_FIX = "quick_fix"
    TUTORIAL = "tutorial"
    TROUBLESHOOTING = "troubleshooting"
    CONFIGURATION = "configuration"


# Features that depend on a live connection
DEPENDENT_FEATURES: tuple[Feature, ...] = (
    Feature.MODELS,
    Feature.CHAT,
    Feature.COMPLETION,
    Feature.EMBEDDINGS,
)
