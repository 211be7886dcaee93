# backend/wsgi.py
from liquorpos import create_app

app = create_app()
