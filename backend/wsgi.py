# backend/wsgi.py
from assetlend import create_app

app = create_app()
