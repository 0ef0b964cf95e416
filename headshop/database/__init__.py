"""Shared SQLAlchemy instance. Models and repositories import `db` from here."""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
