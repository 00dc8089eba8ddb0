"""
asgi.py -- Demo assembly of the auth HTTP surface.

Builds the app over the SQL credential store configured by DATABASE_URL.
Host applications normally call api.main.create_app() with their own
AuthSessionService instead.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app

app = create_app()
