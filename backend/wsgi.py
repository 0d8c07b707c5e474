# backend/wsgi.py
from lpg_dispatch import create_app

app = create_app()
