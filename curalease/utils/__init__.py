from curalease.utils.retry import retry_on_unavailable

__all__ = ["retry_on_unavailable"]
