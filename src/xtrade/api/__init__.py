__all__ = ["create_app"]

from xtrade.api.app import create_app
