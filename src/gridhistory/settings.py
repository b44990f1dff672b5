import os

DB_HOST = os.environ.get("GRID_DB_HOST", "127.0.0.1")
DB_PORT = int(os.environ.get("GRID_DB_PORT", "5432"))
DB_NAME = os.environ.get("GRID_DB_NAME", "grid")
DB_USER = os.environ.get("GRID_DB_USER", "grid_user")
DB_PASSWORD = os.environ.get("GRID_DB_PASSWORD", "grid_password")
