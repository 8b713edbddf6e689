import logging

from flask import Flask, jsonify
from jwt.algorithms import RSAAlgorithm

from examples.token_server.app_config import (
    build_token_endpoint,
    load_settings,
    load_signing_key,
)


def create_app() -> Flask:
    """
    Create and configure the demo authorization server.

    Exposes the JWT-bearer token endpoint and the JWKS resource servers use
    to verify the access tokens it mints.

    Returns:
        Flask: Configured Flask application instance
    """
    logging.basicConfig(level=logging.INFO)

    settings = load_settings()
    if not settings["AS_ISSUER"]:
        raise RuntimeError("Missing required environment variable: AS_ISSUER")

    signing_key = load_signing_key(settings)
    public_jwk = RSAAlgorithm.to_jwk(signing_key.public_key(), as_dict=True)
    public_jwk.update({"kid": settings["AS_SIGNING_KEY_ID"], "alg": "RS256", "use": "sig"})

    app = Flask(__name__)
    build_token_endpoint(settings, signing_key).init_app(app)

    @app.get("/.well-known/jwks.json")
    def jwks():
        """Public keys for verifying issued access tokens."""
        return jsonify({"keys": [public_jwk]}), 200

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"status": "error", "message": "Resource not found."}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"status": "error", "message": "Method not allowed."}), 405

    return app


if __name__ == "__main__":
    create_app().run(port=5001)
