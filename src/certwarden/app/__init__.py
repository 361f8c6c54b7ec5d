"""Flask application package for certwarden.

Public API::

    from certwarden.app import create_app
"""

from certwarden.app.factory import create_app

__all__ = ["create_app"]
