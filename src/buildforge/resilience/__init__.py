from buildforge.resilience.retry import RetryPolicy

__all__ = ["RetryPolicy"]
