"""
域名管理 API

增删域名、为域名添加检查。输入先在本地校验，再转发到检查后端。
"""

from fastapi import APIRouter, Depends, status

from ...coordinator import RefreshCoordinator
from ...models import CheckCreate, DomainCreate
from ..dependencies import get_coordinator

router = APIRouter(prefix="/api/domains", tags=["domains"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_domain(data: DomainCreate, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """创建域名（接受 URL 形式输入，只保留主机名）"""
    domain = await coordinator.create_domain(data.name)
    return {"success": True, "domain": domain.model_dump() if domain else None}


@router.delete("/{domain_id}")
async def delete_domain(domain_id: int, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """删除域名及其全部检查"""
    await coordinator.delete_domain(domain_id)
    return {"success": True, "message": f"Domain {domain_id} deleted"}


@router.post("/{domain_id}/checks", status_code=status.HTTP_201_CREATED)
async def create_check(
    domain_id: int,
    data: CheckCreate,
    coordinator: RefreshCoordinator = Depends(get_coordinator),
):
    """为域名添加检查"""
    check = await coordinator.create_check(domain_id, data)
    return {"success": True, "check": check.model_dump() if check else None}
