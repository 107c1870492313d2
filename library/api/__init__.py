# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - health.py: Liveness endpoint
#   - books.py: Upload, list and delete books
#   - chat.py: Library-wide and single-book chat
#   - deps.py: Auth and service dependencies shared by the routers
# =============================================================================
