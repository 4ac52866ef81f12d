# backend/wsgi.py
from pharmamarket import create_app

app = create_app()
