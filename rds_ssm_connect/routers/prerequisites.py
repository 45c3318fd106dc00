from fastapi import APIRouter

from rds_ssm_connect.schemas.connection import PrerequisitesResult
from rds_ssm_connect.services.prerequisites import check_prerequisites

router = APIRouter(tags=["prerequisites"])


@router.get("", response_model=PrerequisitesResult, response_model_by_alias=True)
async def prerequisites():
    """Report whether aws-vault, the AWS CLI and the session manager plugin are installed."""
    return await check_prerequisites()
