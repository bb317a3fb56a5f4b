# backend/routes_analytics.py
# GET /projects/{project_id}/analytics/{analytics_type}

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.analytics import ANALYTICS_TYPES, compute_analytics, fetch_project_dataset
from backend.dependencies import ProjectScope, require_module_access
from backend.errors import ApiError, ErrorCode
from backend.models import ModuleName
from backend.responses import ok

router = APIRouter(tags=["analytics"])


@router.get("/projects/{project_id}/analytics/{analytics_type}")
def get_analytics(analytics_type: str, scope: ProjectScope = Depends(require_module_access(ModuleName.overview))):
    if analytics_type not in ANALYTICS_TYPES:
        raise ApiError(ErrorCode.INVALID_TYPE, f"Invalid analytics type: {analytics_type}")
    print(f"[ANALYTICS] {analytics_type} for project_id={scope.project_id}, user_id={scope.user_id}")
    dataset = fetch_project_dataset(scope.project_id)
    return ok(compute_analytics(analytics_type, dataset))
