from .manager import SecretsManager

__all__ = ["SecretsManager"]
