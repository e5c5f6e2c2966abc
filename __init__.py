"""Scene orchestrator: batched, resumable scene generation from long-form video."""

__version__ = "1.0.0"
