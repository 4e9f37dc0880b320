"""
Health check endpoint.

Reports whether the embedded history database answers and
which schema version it carries.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medinsight_history.models.base import get_db
from medinsight_history.models.schema_version import SCHEMA_VERSION, get_schema_version

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Return application health status including database connectivity.

    An unreachable database makes the service degraded, not down:
    the analysis modules keep working without history.
    """
    try:
        schema_version = get_schema_version(db.connection())
        db_status = "healthy"
    except SQLAlchemyError:
        schema_version = None
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "service": "medinsight-history",
        "database": db_status,
        "schema_version": schema_version,
        "supported_schema_version": SCHEMA_VERSION,
    }
