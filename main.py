# main.py – Einstiegspunkt für gunicorn (main:application)
from app import create_app

application = create_app()
