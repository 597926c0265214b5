"""FastAPI dependency providers."""

from fastapi import HTTPException, status

from .config import BastionConfig, get_config

_config_instance: BastionConfig | None = None
_service = None
_logon_guard = None


def get_app_config() -> BastionConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


def set_service(service, logon_guard=None) -> None:
    global _service, _logon_guard
    _service = service
    _logon_guard = logon_guard


def get_service():
    """The running ``BastionService``; 503 until the app has started."""
    if _service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return _service


def get_logon_guard():
    return _logon_guard
