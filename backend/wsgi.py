# backend/wsgi.py
from steeltrack import create_app

app = create_app()
