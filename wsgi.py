"""
WSGI entry point, also used by the Flask CLI.

Usage:
    FLASK_APP=wsgi flask probe-features
    FLASK_APP=wsgi flask probe-table tickets --ddl
    flask db migrate -m "description"
    flask db upgrade
"""

from ticket_parity import create_app

app = create_app()
