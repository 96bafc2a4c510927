"""ClientPulse REST API Blueprint"""

from flask import Blueprint

api_bp = Blueprint('api', __name__, url_prefix='/api/v1')

# Import routes after blueprint is defined to avoid circular imports
from . import routes

__all__ = ['api_bp']
