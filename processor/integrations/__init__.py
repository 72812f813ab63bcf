"""External model integrations."""

from .inference import (
    InferenceError,
    ModelRequestError,
    ModelUnavailableError,
    PrimaryModelClient,
    SecondaryModelClient,
)

__all__ = [
    "InferenceError",
    "ModelRequestError",
    "ModelUnavailableError",
    "PrimaryModelClient",
    "SecondaryModelClient",
]
