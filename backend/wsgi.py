# backend/wsgi.py
# FLASK_APP entry point: `python -m flask --app wsgi run` from the backend directory.
from shoppad import create_app

app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000)
