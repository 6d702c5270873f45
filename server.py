#!/usr/bin/env python3
"""
Agent Action Governance Server
Flask service that decides whether agent-proposed actions run on autopilot
or wait for a human, and records every decision for audit.
"""

from flask import Flask, jsonify
from flask_cors import CORS
import logging
import os
from pathlib import Path
import secrets

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)

app = Flask(__name__)
CORS(app, supports_credentials=True)

# Secret key for sessions (generate a secure one for production)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', secrets.token_hex(32))

# Database configuration
database_url = os.environ.get('DATABASE_URL', f'sqlite:///{Path(__file__).parent}/governance.db')

# Fix Heroku/Vercel's postgres:// scheme (should be postgresql://)
if database_url and database_url.startswith('postgres://'):
    database_url = database_url.replace('postgres://', 'postgresql://', 1)

app.config['SQLALCHEMY_DATABASE_URI'] = database_url
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# PostgreSQL-specific connection pool settings
if database_url and database_url.startswith('postgresql://'):
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
        'pool_size': 5,
        'max_overflow': 10,
        'pool_recycle': 300,  # Recycle connections after 5 minutes
        'pool_pre_ping': True,
        'pool_timeout': 30,
        'connect_args': {
            'connect_timeout': 10,
        }
    }
else:
    # SQLite settings (for local dev); writers wait for each other instead of failing
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
        'pool_pre_ping': True,
        'connect_args': {'timeout': 30},
    }

# Import and initialize database
from models import db  # noqa: E402
db.init_app(app)

# Initialize rate limiter
from rate_limiter import init_limiter  # noqa: E402
limiter = init_limiter(app)

# Register governance routes
from routes.governance_routes import register_governance_routes  # noqa: E402
register_governance_routes(app)


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok'})


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_ENV') == 'development')
