"""WSGI entrypoint: `gunicorn headshop.main:app`."""
import os

from headshop.factory import create_app

app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "5000")))
