"""
Uniform result type for speech subsystems
"""
from pydantic import BaseModel
from typing import Optional


class OperationResult(BaseModel):
    """Outcome of a recognition or synthesis operation"""
    success: bool
    provider: Optional[str] = None
    used_fallback: bool = False
    note: Optional[str] = None
    error: Optional[str] = None
    shaped_text: Optional[str] = None

    @classmethod
    def ok(cls, provider: str, **kwargs) -> "OperationResult":
        return cls(success=True, provider=provider, **kwargs)

    @classmethod
    def failed(cls, error: str, provider: Optional[str] = None, **kwargs) -> "OperationResult":
        return cls(success=False, provider=provider, error=error, **kwargs)
