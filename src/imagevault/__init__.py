"""ImageVault - prompt-to-private-image generation service."""

__version__ = "0.1.0"

from imagevault.core.config import ImageVaultConfig, config
from imagevault.core.orchestrator import GenerationOrchestrator, GenerationState

__all__ = [
    "GenerationOrchestrator",
    "GenerationState",
    "ImageVaultConfig",
    "config",
]
