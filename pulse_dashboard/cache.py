"""
实体缓存

按域名缓存检查列表，避免周期刷新时重复请求 /domains/{id}/checks。

没有 TTL：正确性依赖调用方在每次变更（增删检查、启用/禁用、删除域名）
后调用 invalidate / invalidate_all。

每个域名带一个代数（generation），失效时递增。拉取列表前记下代数，
写回时用 put_if_unchanged：拉取期间发生过失效则丢弃这次写入，
避免变更前的旧列表覆盖失效结果。
"""

import asyncio
from typing import Dict, List, Optional

from .models import Check


class EntityCache:
    """
    检查列表缓存管理器

    管理：
    - checks_by_domain: {domain_id: [Check, ...]}
    - generations: {domain_id: int}
    """

    def __init__(self):
        self._checks_by_domain: Dict[int, List[Check]] = {}
        self._generations: Dict[int, int] = {}
        # invalidate_all 之前的写入一律作废
        self._epoch = 0
        self._lock = asyncio.Lock()

    def _token(self, domain_id: int) -> tuple:
        return (self._epoch, self._generations.get(domain_id, 0))

    async def get(self, domain_id: int) -> Optional[List[Check]]:
        """获取缓存的检查列表，不存在返回 None"""
        async with self._lock:
            checks = self._checks_by_domain.get(domain_id)
            return list(checks) if checks is not None else None

    async def generation(self, domain_id: int) -> tuple:
        """当前代数，配合 put_if_unchanged 使用"""
        async with self._lock:
            return self._token(domain_id)

    async def put(self, domain_id: int, checks: List[Check]):
        """整体写入检查列表（不做部分更新）"""
        async with self._lock:
            self._checks_by_domain[domain_id] = list(checks)

    async def put_if_unchanged(self, domain_id: int, checks: List[Check], generation: tuple) -> bool:
        """
        代数未变化时写入

        Returns:
            是否写入；拉取期间缓存被失效时返回 False
        """
        async with self._lock:
            if self._token(domain_id) != generation:
                return False
            self._checks_by_domain[domain_id] = list(checks)
            return True

    async def invalidate(self, domain_id: int):
        """使单个域名的缓存失效"""
        async with self._lock:
            self._checks_by_domain.pop(domain_id, None)
            self._generations[domain_id] = self._generations.get(domain_id, 0) + 1

    async def invalidate_all(self):
        """清空全部缓存（域名集合变化时使用）"""
        async with self._lock:
            self._checks_by_domain.clear()
            self._epoch += 1

    async def contains(self, domain_id: int) -> bool:
        async with self._lock:
            return domain_id in self._checks_by_domain

    async def find_domain_of_check(self, check_id: int) -> Optional[int]:
        """在缓存中查找检查所属域名"""
        async with self._lock:
            for domain_id, checks in self._checks_by_domain.items():
                if any(c.id == check_id for c in checks):
                    return domain_id
            return None
