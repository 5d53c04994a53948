"""CareKeep Observability - structured logging setup"""
from carekeep.observability.logging import configure_logging, redact_free_text_processor

__all__ = ["configure_logging", "redact_free_text_processor"]
