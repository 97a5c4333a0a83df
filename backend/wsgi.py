# backend/wsgi.py
from kardex import create_app

app = create_app()
