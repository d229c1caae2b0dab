from .app import RunStore, create_app

__all__ = ["RunStore", "create_app"]
