"""
Error taxonomy for call orchestration

Subsystems recover locally from ProviderUnavailableError (fallback path).
ProviderRejectedError surfaces as a failed call with a short reason.
"""
from typing import Optional


class VoiceCallerError(RuntimeError):
    """Base class for orchestration errors"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ProviderUnavailableError(VoiceCallerError):
    """Provider not configured, unreachable or erroring"""
    pass


class ProviderRejectedError(VoiceCallerError):
    """Provider refused the request (bad destination, invalid params)"""

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, provider)
        self.status_code = status_code


class ProviderTimeoutError(ProviderUnavailableError):
    """Network call exceeded its budget"""
    pass


class StaleCallError(VoiceCallerError):
    """Call stuck in a transitional state"""
    pass
