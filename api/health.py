from flask import Blueprint

bp = Blueprint("health", __name__)

@bp.get("/health")
def health():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: API is up
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
            service:
              type: string
              example: auth-api
    """
    return {"status": "ok", "service": "auth-api"}, 200
