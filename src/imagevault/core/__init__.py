"""Core functionality for the generation pipeline.

Architecture Overview
---------------------
1. **Configuration** (config.py): Pydantic Settings, ``IMAGEVAULT_`` prefix.
2. **Backends** (backends/): auth, object storage and tables behind one
   interface; Supabase for production, a local filesystem/SQLite backend for
   development and tests.
3. **Pipeline components**, leaf-first:
   - webhook.py: asks the external webhook for an image URL
   - secure_copy.py: re-hosts that image in the caller's private namespace
   - signed_urls.py: mints time-limited read URLs
   - history.py: per-user generation history
4. **Orchestration** (orchestrator.py, pipeline.py): the state machine that
   sequences one run, and the wiring that builds it from configuration.

Identity is passed explicitly as an :class:`~imagevault.core.auth.AuthContext`.
"""

from imagevault.core.auth import AuthContext
from imagevault.core.config import ImageVaultConfig, config
from imagevault.core.orchestrator import GenerationOrchestrator, GenerationState, GenerationStatus
from imagevault.core.pipeline import Pipeline

__all__ = [
    "AuthContext",
    "GenerationOrchestrator",
    "GenerationState",
    "GenerationStatus",
    "ImageVaultConfig",
    "Pipeline",
    "config",
]
