from app import create_app

# `flask --app wsgi.py run` / gunicorn wsgi:app
app = create_app()
