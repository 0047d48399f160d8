# election_ledger/__init__.py

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
import os
from flask_jwt_extended import JWTManager
from datetime import timedelta


def _env_flag(name, default='false'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'change-me-in-production')
app.config['JWT_SECRET_KEY'] = os.environ.get('JWT_SECRET_KEY', 'change-me-in-production-ledger-jwt')
app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(
    minutes=int(os.environ.get('JWT_ACCESS_TOKEN_MINUTES', '30')))
app.config['JWT_TOKEN_LOCATION'] = ['headers', 'cookies']  # Bearer header for API clients, cookies for browsers
app.config['JWT_COOKIE_CSRF_PROTECT'] = False
app.config['JWT_ACCESS_COOKIE_PATH'] = '/'
app.config['JWT_COOKIE_SECURE'] = _env_flag('JWT_COOKIE_SECURE')

# Ledger engine settings
app.config['LEDGER_DATA_DIR'] = os.environ.get('LEDGER_DATA_DIR', 'data')
app.config['LEDGER_AUDIT_DIR'] = os.environ.get('LEDGER_AUDIT_DIR', 'logs')
app.config['LEDGER_ADMIN_PIN'] = os.environ.get('LEDGER_ADMIN_PIN', '1234')
app.config['LEDGER_STRONG_PASSWORDS'] = _env_flag('LEDGER_STRONG_PASSWORDS')
app.config['LEDGER_VOTE_RATE_LIMIT'] = os.environ.get('LEDGER_VOTE_RATE_LIMIT', '30/minute')
app.config['RATELIMIT_STORAGE_URI'] = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')

# Fix proxy headers for HTTPS
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

jwt = JWTManager(app)

limiter = Limiter(key_func=get_remote_address, default_limits=["10000/hour"])
limiter.init_app(app)

from election_ledger import routes  # noqa: E402,F401
