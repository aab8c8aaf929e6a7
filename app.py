# app.py
# WSGI entry point: `gunicorn app:app` or `flask --app app run`
import os

from escaperoom import create_app

app = create_app(os.getenv("FLASK_CONFIG", "default"))

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
