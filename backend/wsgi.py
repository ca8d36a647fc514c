# backend/wsgi.py
from partsdesk import create_app, start_sweeper

app = create_app()
start_sweeper(app)
