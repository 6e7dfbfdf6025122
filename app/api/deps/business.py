import structlog
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import NotFoundError
from app.models.business import Business
from app.services.business import BusinessService

logger = structlog.get_logger(__name__)


async def get_active_business(
    business_id: int, db: AsyncSession = Depends(get_db)
) -> Business:
    """
    Resolve the business named in the path.

    This dependency ensures that:
    1. The business exists
    2. The business is active
    """
    try:
        business = await BusinessService(db).get_business(business_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    if not business.is_active:
        logger.warning("Inactive business access attempted", business_id=business_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Business is inactive"
        )

    return business
