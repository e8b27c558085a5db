# backend/wsgi.py
from bizops import create_app

app = create_app()
