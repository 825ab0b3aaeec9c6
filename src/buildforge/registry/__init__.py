from buildforge.registry.client import HttpRegistryClient, ImageInfo, RegistryClient

__all__ = ["HttpRegistryClient", "ImageInfo", "RegistryClient"]
