from buildforge.utils.logging import bind_object, configure_logging

__all__ = ["bind_object", "configure_logging"]
