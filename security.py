from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Per-route limits are declared on the views; storage comes from RATELIMIT_STORAGE_URI
limiter = Limiter(key_func=get_remote_address)


def add_security_headers(response):
    """Add security headers to response"""
    # JSON API and stored uploads only; nothing here renders scripts
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

    # Other security headers
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'same-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'

    # Uploaded files never change under the same id
    if response.mimetype and response.mimetype.startswith(('image/', 'application/pdf')):
        response.headers['Cache-Control'] = 'public, max-age=31536000'
    else:
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'

    return response


def add_hsts_header(response):
    response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    return response


def init_security(app):
    """Initialize security features for the Flask app"""
    # Frontend calls the API with credentials from its own origin
    CORS(
        app,
        resources={r"/api/*": {"origins": [app.config['FRONTEND_ORIGIN']]}},
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization'] + list(app.config['WTF_CSRF_HEADERS']),
    )

    # Enable HSTS
    if app.config.get('PREFERRED_URL_SCHEME') == 'https':
        app.after_request(add_hsts_header)

    # Add security headers to all responses
    app.after_request(add_security_headers)

    limiter.init_app(app)
