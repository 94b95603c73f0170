"""Micropub admin web package.

Flask application exposing the IndieAuth login flow and the composer
as JSON endpoints.

Key Components:
    create_app: Application factory taking the configuration and optional
        collaborators (session store, auth client, composer, micropub client)

Usage:
    Start the admin server:
        $ micropub-admin

    Test with curl:
        $ curl -i -X POST http://localhost:8080/login-init -d me=https://example.com/
"""

from web.app import create_app

__all__ = ["create_app"]
