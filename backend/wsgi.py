# backend/wsgi.py
from orderengine import create_app

app = create_app()
