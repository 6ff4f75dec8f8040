from .otel_logger import CredentialRedactionFilter, get_logger

__all__ = ["CredentialRedactionFilter", "get_logger"]
