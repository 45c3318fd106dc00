from fastapi import APIRouter, HTTPException
from typing import List

from rds_ssm_connect.core.exceptions import TunnelError
from rds_ssm_connect.routers.connections import tunnel_http_exception
from rds_ssm_connect.schemas.project import ProjectSummary
from rds_ssm_connect.services.projects import (
    list_available_projects,
    list_profiles_for_project,
)

router = APIRouter(tags=["projects"])


@router.get("", response_model=List[ProjectSummary])
async def get_projects():
    """List the configured projects."""
    return list_available_projects()


@router.get("/{project_key}/profiles", response_model=List[str])
async def get_project_profiles(project_key: str):
    """List the AWS profiles usable with a project."""
    try:
        return list_profiles_for_project(project_key)
    except TunnelError as e:
        raise tunnel_http_exception(e)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Cannot read AWS config: {e}")
